import json
import logging
from pathlib import Path
from typing import Any, Dict

from forkpool.storage.base import Storage

log = logging.getLogger(__name__)


class FileStorage(Storage):
    """
    The durable fallback backend: the whole record is one JSON document,
    replaced atomically on every commit.
    """

    def __init__(self, prefix: str, path: Path) -> None:
        """
        :param prefix: The record's key prefix, kept for logging only.
        :param path: The JSON file holding the record. It may be missing or empty.
        """
        super().__init__(prefix)
        self.path = path
        self._snapshot = self._read_all()

    def _read_all(self) -> Dict[str, Any]:
        try:
            content = self.path.read_text()
        except FileNotFoundError:
            return {}
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            log.error(f"State file '{self.path}' is corrupt, treating it as empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _persist(self, changes: Dict[str, Any]) -> None:
        document = {**self._snapshot, **changes}
        temp_path = self.path.with_suffix(".tmp")
        try:
            with temp_path.open("w") as f:
                json.dump(document, f)
            temp_path.replace(self.path)
        finally:
            temp_path.unlink(missing_ok=True)

    def _remove(self) -> None:
        self.path.unlink(missing_ok=True)
