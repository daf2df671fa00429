import json
import sqlite3
import logging
from pathlib import Path
from typing import Any, Dict

from forkpool.database import StateDBManager
from forkpool.errors import StorageUnavailableError
from forkpool.storage.base import Storage

log = logging.getLogger(__name__)


class SQLiteStorage(Storage):
    """
    The fast backend: one row per key in a SQLite database that, by default,
    lives on tmpfs. Many records share the database file, separated by prefix.
    """

    def __init__(self, prefix: str, db_path: Path, timeout: float = 10) -> None:
        """
        :param prefix: The record's key prefix.
        :param db_path: Location of the shared state database.
        :param timeout: Seconds to wait on a database locked by another process.
        :raises StorageUnavailableError: If the database cannot be opened or initialized.
        """
        super().__init__(prefix)
        self.db = StateDBManager(db_path, timeout=timeout)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db.initialize_database()
            self._snapshot = self._read_all()
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailableError(f"State database '{db_path}' is unavailable: {e}") from e

    def _read_all(self) -> Dict[str, Any]:
        return {key: json.loads(raw) for key, raw in self.db.load(self.prefix).items()}

    def _persist(self, changes: Dict[str, Any]) -> None:
        self.db.store(self.prefix, [(key, json.dumps(value)) for key, value in changes.items()])

    def _remove(self) -> None:
        self.db.delete(self.prefix)
