import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

log = logging.getLogger(__name__)


class Storage(ABC):
    """
    A prefix-scoped key-value record that survives process restarts.

    Writes are buffered by `set()` and published by `commit()`. Reads are
    served from an in-memory snapshot of the record; a process that did not
    perform the latest commit (a forked child, or the supervisor polling a
    child's state) must call `reload()` to see fresh values.

    Values must be JSON-serializable. They are normalized through JSON on
    `set()`, so a value reads back the same in every process.
    """

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self._snapshot: Dict[str, Any] = {}
        self._pending: Dict[str, Any] = {}

    #* --- Backend primitives ---
    @abstractmethod
    def _read_all(self) -> Dict[str, Any]:
        """Returns every committed key of this record."""

    @abstractmethod
    def _persist(self, changes: Dict[str, Any]) -> None:
        """Atomically publishes the given keys."""

    @abstractmethod
    def _remove(self) -> None:
        """Deletes the record from the backing medium."""

    #* --- Public contract ---
    def get(self, key: str, default: Any = None) -> Any:
        if key in self._pending:
            return self._pending[key]
        return self._snapshot.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._pending[key] = json.loads(json.dumps(value))

    def commit(self) -> None:
        if not self._pending:
            return
        self._persist(dict(self._pending))
        self._snapshot.update(self._pending)
        self._pending.clear()

    def reload(self) -> None:
        """Re-reads the record, discarding the snapshot and uncommitted writes."""
        self._snapshot = self._read_all()
        self._pending.clear()

    def destroy(self) -> None:
        """Irreversibly removes the record."""
        self._remove()
        self._snapshot.clear()
        self._pending.clear()
        log.debug(f"State record '{self.prefix}' destroyed.")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} prefix={self.prefix!r}>"
