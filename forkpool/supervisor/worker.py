import os
import copy
import time
import signal
import psutil
import sqlite3
import logging
import itertools
from typing import Any, Callable, Optional

from forkpool.config import effective_settings as config
from forkpool.errors import InvalidStateError
from forkpool.storage import Storage, open_storage
from forkpool.supervisor import process_utils, shutdown
from forkpool.supervisor.process_utils import ForkResult

log = logging.getLogger(__name__)

Task = Callable[["Worker"], None]
InterruptedHandler = Callable[["Worker", int], None]


class Worker:
    """
    One supervised unit of repeated work, running in its own forked process.

    Every call to `run()` forks a fresh process that calls the task once and
    exits. State that must outlive a single process (the finished flag and the
    saved result) goes through a Storage record owned by this worker.

    Whether code runs in the forked child is derived from the process id
    captured at construction, so a copy of a worker answers correctly too.

    Usage::

        template = Worker(lambda w: w.save_result(fetch(w.get_payload())))
        workers = [template.clone(thread_number=i) for i in range(3)]
        for worker, url in zip(workers, urls):
            worker.run(url)
        while any(w.is_alive() for w in workers):
            time.sleep(1)
        results = [w.get_saved_result() for w in workers]
    """
    TAG = "WORKER"

    _serials = itertools.count()

    def __init__(self, task: Task, on_interrupted: Optional[InterruptedHandler] = None, thread_number: int = -1) -> None:
        """
        :param task: Called with this worker, once per forked process.
        :param on_interrupted: Called in the child with this worker and the signal number
                               when the child is asked to stop.
        :param thread_number: The worker's slot in its pool.
        """
        self._thread_number = int(thread_number)
        self._task = task
        self._on_interrupted = on_interrupted
        self._parent_pid = os.getpid()
        self._serial = next(Worker._serials)

        self._child_pid: Optional[int] = None
        self._process: Optional[psutil.Process] = None
        self._reaped = False
        self._launch_count = 0
        self._payload: Any = None
        self._start_time: Optional[float] = None
        self._finished = False
        self._saved_result: Any = None
        self._storage: Optional[Storage] = None

    def __copy__(self) -> "Worker":
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        # A clone is a new worker: it must not share the state record.
        clone._serial = next(Worker._serials)
        clone._child_pid = None
        clone._process = None
        clone._reaped = False
        clone._launch_count = 0
        clone._finished = False
        clone._saved_result = None
        clone._storage = None
        return clone

    def clone(self, thread_number: Optional[int] = None) -> "Worker":
        """
        Returns an unlaunched copy of this worker with its own state record.

        :param thread_number: Slot for the copy. Defaults to this worker's slot.
        """
        clone = copy.copy(self)
        if thread_number is not None:
            clone._thread_number = int(thread_number)
        return clone

    #* --- State ---
    def _get_storage(self) -> Storage:
        if self._storage is None:
            prefix = f"{config.STATE_KEY_PREFIX}.{self._parent_pid}-{self._thread_number}-{self._serial}."
            self._storage = open_storage(prefix)
        return self._storage

    def _save_state(self) -> None:
        storage = self._get_storage()
        storage.set("finished", self._finished)
        storage.set("data", self._saved_result)
        storage.commit()

    def _load_state(self) -> None:
        storage = self._get_storage()
        storage.reload()
        self._finished = bool(storage.get("finished", False))
        self._saved_result = storage.get("data")

    #* --- Lifecycle ---
    def is_forked(self) -> bool:
        """Tells whether the current process is a child forked from this worker's owner."""
        return os.getpid() != self._parent_pid

    def is_alive(self) -> bool:
        """
        Returns True while the child process is running. Never blocks.

        Only meaningful in the owning process: a child cannot observe its own
        death, so from inside the child this always returns True.
        """
        if self.is_forked():
            return True
        if not self._child_pid or self._reaped:
            return False
        if process_utils.reap_nonblocking(self._child_pid):
            return True
        self._reaped = True
        return False

    def _mark_reaped(self) -> None:
        """Records that the child was already waited for elsewhere, so its pid is never polled again."""
        self._reaped = True

    def is_task_finished(self) -> bool:
        """If the task is finished, the worker will not be forked again after it exits."""
        if not self.is_forked():
            self._load_state()
        return self._finished

    def mark_finished(self) -> None:
        """
        Marks the task as finished, so the worker is not respawned after this
        process exits. Meant to be called by the task.
        """
        self._finished = True
        self._save_state()

    def save_result(self, result: Any) -> None:
        """
        Saves a JSON-serializable value that is visible to the owner and to
        every later fork of this worker.
        """
        self._saved_result = result
        self._save_state()

    def get_saved_result(self) -> Any:
        if not self.is_forked():
            self._load_state()
        return self._saved_result

    def run(self, payload: Any = None) -> ForkResult:
        """
        Forks and calls the task in the child. Returns in the parent only.

        :param payload: Launch parameters, available to the task via `get_payload()`.
        :return: The parent's view of the fork.
        :raises InvalidStateError: If called from the child, or while the previous child is alive.
        """
        if self.is_forked():
            raise InvalidStateError("A worker can not be relaunched from its own child process.")
        if self.is_alive():
            raise InvalidStateError(f"Worker #{self._thread_number} is already running (PID {self._child_pid}).")

        self._load_state()
        self._start_time = time.time()
        self._payload = payload
        result = process_utils.fork_process()
        if result.is_child:
            self._child_pid = 0
            self._process = None
            self._run_child()

        self._child_pid = result.child_pid
        self._process = process_utils.get_process_from_pid(result.child_pid)
        self._reaped = False
        self._launch_count += 1
        log.debug(f"Worker #{self._thread_number} launched with PID {result.child_pid}.")
        return result

    def _run_child(self) -> None:
        exit_code = 0
        try:
            process_utils.start_new_session()
            shutdown.install_signal_handlers(self._handle_interrupt)
            process_utils.set_process_title(
                f"[{self.TAG}] [{self._thread_number}] {process_utils.describe_command_line()}"
            )
            self._task(self)
        except Exception:
            log.exception(f"[{self._thread_number}] Task raised an exception.")
            exit_code = 1
        finally:
            process_utils.terminate_current_process(exit_code)

    def _handle_interrupt(self, signum: int, frame: Any) -> None:
        name = signal.Signals(signum).name
        log.info(f"[{self._thread_number}] Signal received: {name}")
        if self._on_interrupted:
            try:
                self._on_interrupted(self, signum)
            except Exception:
                log.exception(f"[{self._thread_number}] Interrupted handler raised an exception.")
        log.info(f"[{self._thread_number}] Worker has been stopped with {name}.")
        process_utils.terminate_current_process(0)

    #* --- Accessors ---
    def get_child_pid(self) -> Optional[int]:
        """Returns the child's pid, or 0 when called from the child itself."""
        return self._child_pid

    def get_process(self) -> Optional[psutil.Process]:
        return self._process

    def get_thread_number(self) -> int:
        return self._thread_number

    def get_start_time(self) -> Optional[float]:
        return self._start_time

    def get_payload(self) -> Any:
        return self._payload

    def get_launch_count(self) -> int:
        """Number of times this worker has been forked from the owner."""
        return self._launch_count

    def __repr__(self) -> str:
        return f"<Worker #{self._thread_number} pid={self._child_pid}>"

    def __del__(self) -> None:
        # Forked children share this object's memory but not its ownership.
        storage = getattr(self, "_storage", None)
        if storage is None or os.getpid() != getattr(self, "_parent_pid", None):
            return
        try:
            storage.destroy()
        except (sqlite3.Error, OSError) as e:
            log.warning(f"Failed to destroy state record '{storage.prefix}': {e}")
