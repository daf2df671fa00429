import sqlite3
import logging
from pathlib import Path
from typing import Dict, List, Tuple
from forkpool.database.base import BaseDBManager

log = logging.getLogger(__name__)


class StateDBManager(BaseDBManager):
    """
    Manages the worker state table. Rows are grouped by key prefix, one
    prefix per worker slot, and values are stored as JSON text.
    """

    def __init__(self, db_path: Path, timeout: float = 10):
        """
        :param db_path: The path to the state SQLite database file.
        :param timeout: Seconds to wait on a database locked by another process.
        """
        super().__init__(db_path, enable_wal=False, timeout=timeout)

    def initialize_database(self) -> None:
        """Ensures the worker_state table exists."""
        try:
            self.execute('''
                CREATE TABLE IF NOT EXISTS worker_state (
                    prefix TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT,
                    PRIMARY KEY (prefix, key)
                )
            ''')
        except sqlite3.Error as e:
            log.error(f"Could not create state table in '{self.db_path}': {e}")
            raise

    def load(self, prefix: str) -> Dict[str, str]:
        """
        Reads every key stored under a prefix.

        :param prefix: The worker's key prefix.
        :return: A mapping of key to raw JSON text.
        """
        rows = self.fetch_all("SELECT key, value FROM worker_state WHERE prefix = ?", (prefix,))
        return {row['key']: row['value'] for row in rows}

    def store(self, prefix: str, items: List[Tuple[str, str]]) -> None:
        """
        Upserts several keys under a prefix in one transaction.

        :param prefix: The worker's key prefix.
        :param items: (key, raw JSON text) pairs.
        """
        if not items:
            return
        self.execute_many(
            "INSERT OR REPLACE INTO worker_state (prefix, key, value) VALUES (?, ?, ?)",
            [(prefix, key, value) for key, value in items]
        )

    def delete(self, prefix: str) -> None:
        """Removes every key stored under a prefix."""
        self.execute("DELETE FROM worker_state WHERE prefix = ?", (prefix,))
