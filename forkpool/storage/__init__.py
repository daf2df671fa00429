"""
Worker state storage.

`open_storage()` returns the fastest backend available on this host: the
SQLite database on tmpfs, or a JSON file in the temp directory when the
database cannot be used.
"""
import os
import logging
import tempfile
from pathlib import Path

from forkpool.config import effective_settings as config
from forkpool.errors import StorageUnavailableError
from .base import Storage
from .file import FileStorage
from .sqlite import SQLiteStorage

log = logging.getLogger(__name__)

__all__ = ["Storage", "SQLiteStorage", "FileStorage", "open_storage"]


def open_storage(prefix: str) -> Storage:
    """
    Opens the state record for a key prefix, falling back silently from the
    fast backend to the file backend.

    :param prefix: A prefix unique to the worker that owns the record.
    :return: An initialized Storage.
    """
    try:
        return SQLiteStorage(prefix, Path(config.STATE_DB_PATH), timeout=config.STATE_DB_TIMEOUT)
    except StorageUnavailableError as e:
        log.debug(f"{e}. Falling back to file storage for '{prefix}'.")

    state_dir = Path(config.STATE_FILE_DIR)
    state_dir.mkdir(parents=True, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=".json", dir=state_dir)
    os.close(fd)
    return FileStorage(prefix, Path(path))
