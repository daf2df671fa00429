import sqlite3
import logging
from pathlib import Path
from typing import List, Dict, Any
from forkpool.database.base import BaseDBManager

log = logging.getLogger(__name__)


class LogDBManager(BaseDBManager):
    """
    Manages all interactions with the logging SQLite database.
    Supervisor and workers share one database, each row tagged with its pid.
    """

    def __init__(self, db_path: Path):
        """
        Initializes the LogDBManager.

        :param db_path: The path to the logging SQLite database file.
        """
        super().__init__(db_path, enable_wal=True)

    def initialize_database(self) -> None:
        """
        Ensures the log table exists in the database.
        """
        try:
            self.execute('''
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL,
                    level TEXT,
                    module TEXT,
                    funcName TEXT,
                    lineno INTEGER,
                    process INTEGER,
                    message TEXT
                )
            ''')
            log.debug("Log database table created/verified.")
        except sqlite3.Error as e:
            log.critical(f"Could not create log database table: {e}", exc_info=True)
            raise

    def insert_log_batch(self, log_entries: List[Dict[str, Any]]) -> None:
        """
        Inserts multiple log entries in a single transaction.

        :param log_entries: List of dictionaries containing log entry data.
                           Each dict should have keys: timestamp, level, module, funcName, lineno, process, message
        """
        if not log_entries:
            return

        params = [(
            entry['timestamp'],
            entry['level'],
            entry['module'],
            entry['funcName'],
            entry['lineno'],
            entry['process'],
            entry['message']
        ) for entry in log_entries]

        self.execute_many(
            '''INSERT INTO logs (timestamp, level, module, funcName, lineno, process, message)
               VALUES (?, ?, ?, ?, ?, ?, ?)''',
            params
        )
