import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import List, Optional, Tuple, Any, Generator

log = logging.getLogger(__name__)


class BaseDBManager:
    """
    Base class for database managers, providing common functionality.

    A new connection is opened for every operation, so an instance can be
    inherited across fork() and used from both sides.
    """

    def __init__(self, db_path: Path, enable_wal: bool = False, timeout: float = 10):
        """
        Initializes the base database manager.

        :param db_path: The path to the SQLite database file.
        :param enable_wal: Whether to enable WAL (Write-Ahead Logging) mode.
        :param timeout: Seconds to wait for a lock held by another connection.
        """
        self.db_path = db_path
        self.enable_wal = enable_wal
        self.timeout = timeout

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager that creates and returns a new database connection,
        closing it afterwards. Concurrent writers rely on SQLite's own locking.

        :return Generator[sqlite3.Connection, None, None]: A generator yielding a database connection.
        """
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            if self.enable_wal:
                conn.execute("PRAGMA journal_mode=WAL;")
            yield conn
        finally:
            conn.close()

    def execute(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> Any:
        """
        Executes a raw SQL command on the database.

        :param sql: The SQL command to execute.
        :param params: Optional parameters for the SQL command.
        :return: The result of the query.
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(sql, params or ())
                conn.commit()
                return cursor.fetchall()
        except sqlite3.Error as e:
            log.error(f"Database operation failed: {e}")
            raise

    def execute_many(self, sql: str, params: List[Tuple[Any, ...]]) -> None:
        """
        Executes a batch of SQL commands in a single transaction.

        :param sql: The SQL command to execute.
        :param params: A list of tuples containing parameters for each command.
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.executemany(sql, params)
                conn.commit()
        except sqlite3.Error as e:
            log.error(f"Batch database operation failed: {e}")
            raise

    def fetch_all(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> List[sqlite3.Row]:
        """
        Fetches all rows from a query.

        :param sql: The SQL command to execute.
        :param params: Optional parameters for the SQL command.
        :return: A list of sqlite3.Row objects.
        """
        try:
            with self._get_connection() as conn:
                conn.row_factory = sqlite3.Row
                cursor = conn.cursor()
                cursor.execute(sql, params or ())
                return cursor.fetchall()
        except sqlite3.Error as e:
            log.error(f"Failed to fetch data: {e}")
            raise
