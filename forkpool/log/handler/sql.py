import os
import sqlite3
import logging
import threading
import weakref
from pathlib import Path
from typing import Optional
from typing import List, Dict, Any
from forkpool.database import LogDBManager

# Open handlers that must be reset in a forked child. Weak, so a closed and
# dropped handler is collected.
_live_handlers: "weakref.WeakSet[SQLiteHandler]" = weakref.WeakSet()


def _reinit_handlers_after_fork() -> None:
    for handler in list(_live_handlers):
        handler._reinit_after_fork()


os.register_at_fork(after_in_child=_reinit_handlers_after_fork)


class SQLiteHandler(logging.Handler):
    """
    A custom logging handler that writes logs to a SQLite database
    in batches using a background thread.

    The handler survives fork(): a child starts with an empty buffer, a fresh
    lock and its own flush thread, so records buffered by the parent are not
    written twice.
    """
    def __init__(self, db_path: Path, buffer_size: int = 100, flush_interval: float = 10):
        """
        Initializes the SQLite handler.

        :param db_path: The path to the SQLite database file.
        :param buffer_size: Number of buffered records that triggers a flush.
        :param flush_interval: Seconds between periodic flushes.
        """
        super().__init__()
        self.db_path = db_path
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval
        self.log_buffer: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()
        self.flush_thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()
        self.logDB = LogDBManager(self.db_path)
        self.logDB.initialize_database()
        self._start_flush_thread()
        _live_handlers.add(self)

    def _start_flush_thread(self) -> None:
        """Starts the background thread that periodically flushes logs to the database."""
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True)
        self.flush_thread.name = "SQLiteFlushThread"
        self.flush_thread.start()

    def _reinit_after_fork(self) -> None:
        """Runs in a freshly forked child. The parent's flush thread does not exist here."""
        self.buffer_lock = threading.Lock()
        self.log_buffer = []
        if self.stop_event.is_set():
            return
        self.stop_event = threading.Event()
        self._start_flush_thread()

    def _periodic_flush(self) -> None:
        """
        Periodically flushes the log buffer. This runs in a background thread.
        """
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        self.flush() # Final flush on stop

    def emit(self, record: logging.LogRecord) -> None:
        """
        Adds a log record to the internal buffer for batch writing.

        :param record: The log record to be processed.
        """
        log_entry = {
            "timestamp": record.created,
            "level": record.levelname,
            "module": record.module,
            "funcName": record.funcName,
            "lineno": record.lineno,
            "process": record.process,
            "message": record.getMessage()
        }
        with self.buffer_lock:
            self.log_buffer.append(log_entry)
            if len(self.log_buffer) >= self.buffer_size:
                self._flush_locked()

    def _flush_locked(self) -> None:
        """
        Writes the buffered logs to the SQLite database. Assumes the buffer lock is held.
        """
        if not self.log_buffer:
            return

        entries_to_write = list(self.log_buffer)
        self.log_buffer.clear()

        # Release lock before DB operation
        self.buffer_lock.release()
        try:
            self.logDB.insert_log_batch(entries_to_write)
        except sqlite3.Error as e:
            print(f"Error writing logs to DB: {e}. Log entries: {len(entries_to_write)}")
        finally:
            self.buffer_lock.acquire()

    def flush(self) -> None:
        """Public method to trigger a manual flush of the log buffer."""
        with self.buffer_lock:
            self._flush_locked()

    def close(self) -> None:
        """
        Shuts down the handler, ensuring the flush thread is joined and the buffer is flushed.
        """
        self.stop_event.set()
        _live_handlers.discard(self)
        if self.flush_thread and self.flush_thread.is_alive():
            self.flush_thread.join()
        # Final flush must be called after the thread is stopped
        self.flush()
        super().close()
