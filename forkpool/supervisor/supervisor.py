import time
import signal
import logging
from typing import Any, Callable, Dict, Optional

from forkpool.config import effective_settings as config
from forkpool.errors import InvalidStateError
from forkpool.supervisor import process_utils, shutdown
from forkpool.supervisor.worker import InterruptedHandler, Task, Worker

log = logging.getLogger(__name__)

TickHandler = Callable[["Supervisor"], None]


class Supervisor:
    """
    Runs a task in a pool of forked worker processes until every worker has
    marked its task finished.

    A worker process that exits without calling `Worker.mark_finished()` is
    forked again with the same payload. Results saved by the workers survive
    those respawns and are returned by `run()`, keyed by slot::

        def count(worker):
            data = worker.get_saved_result() or {"count": 0}
            data["count"] += 1
            worker.save_result(data)
            if data["count"] >= 10:
                worker.mark_finished()

        results = Supervisor(4).set_task(count).run()
        # {0: {"count": 10}, 1: {"count": 10}, 2: {"count": 10}, 3: {"count": 10}}

    An instance can be run again once `run()` has returned, but not from
    inside itself.
    """
    TAG = "SUPERVISOR"

    def __init__(self, worker_count: Optional[int] = None) -> None:
        """
        Initializes the supervisor with defaults from the effective settings.

        :param worker_count: Number of workers. Defaults to POOL_SIZE.
        """
        self._worker_count: int = int(worker_count if worker_count is not None else config.POOL_SIZE)
        self._task: Optional[Task] = None
        self._on_interrupted: Optional[InterruptedHandler] = None
        self._on_tick: Optional[TickHandler] = None
        self._poll_interval_ms: int = int(config.POLL_INTERVAL_MS)
        self._grace_period: float = config.GRACEFUL_SHUTDOWN_TIMEOUT
        self._time_limit: Optional[float] = config.WORKER_TIME_LIMIT

        self._workers: Dict[int, Worker] = {}
        self._launched = False
        self._stopping = False
        # Written by the signal handler, read by the supervision loop.
        self._received_signal: Optional[int] = None

    #* --- Configuration ---
    def set_task(self, task: Task) -> "Supervisor":
        """
        Sets the task called inside each worker process. It runs once per fork,
        and the worker is forked again until the task calls `worker.mark_finished()`.
        """
        self._task = task
        return self

    def set_interrupted_handler(self, handler: InterruptedHandler) -> "Supervisor":
        """Sets the callback a worker runs, with the signal number, before exiting on a signal."""
        self._on_interrupted = handler
        return self

    def set_tick_handler(self, handler: TickHandler) -> "Supervisor":
        """Sets a callback invoked with the supervisor after every polling sweep."""
        self._on_tick = handler
        return self

    def set_poll_interval(self, value_ms: int) -> "Supervisor":
        """Sets the sleep between two polling sweeps, in milliseconds."""
        self._poll_interval_ms = int(value_ms)
        return self

    def set_grace_period(self, seconds: float) -> "Supervisor":
        """Sets how long a signalled worker may take to exit before it is SIGKILLed."""
        self._grace_period = seconds
        return self

    def set_time_limit(self, seconds: Optional[float]) -> "Supervisor":
        """Sets the maximum lifetime of one worker process. None or 0 disables the limit."""
        self._time_limit = seconds or None
        return self

    def set_worker_count(self, count: int) -> "Supervisor":
        self._worker_count = int(count)
        return self

    def get_worker_count(self) -> int:
        return self._worker_count

    def get_poll_interval(self) -> int:
        return self._poll_interval_ms

    def get_workers(self) -> Dict[int, Worker]:
        """Returns the tracked workers by slot. Empty unless running."""
        return dict(self._workers)

    def is_launched(self) -> bool:
        return self._launched

    def is_stopping(self) -> bool:
        return self._stopping

    #* --- Lifecycle ---
    def run(self, payload: Any = None) -> Dict[int, Any]:
        """
        Forks the workers and supervises them until all are finished or the
        pool is stopped.

        :param payload: Launch parameters passed to every worker.
        :return: Each slot's last saved result, ordered by slot.
        :raises InvalidStateError: If already running or no task is set.
        """
        if self._launched:
            raise InvalidStateError("Supervisor cannot be launched twice.")
        if self._task is None:
            raise InvalidStateError("Useless call without a task. Use set_task() to set the task first.")

        self._launched = True
        self._received_signal = None
        previous_handlers: Dict[int, Any] = {}
        start_time = time.time()
        try:
            for slot in range(self._worker_count):
                worker = Worker(self._task, self._on_interrupted, slot)
                # Only the original process gets past run(); children exit inside it.
                worker.run(payload)
                self._workers[slot] = worker
            log.info(f"{len(self._workers)} worker(s) started.")

            previous_handlers = shutdown.install_signal_handlers(self._handle_signal)
            process_utils.set_process_title(f"[{self.TAG}] {process_utils.describe_command_line()}")

            self._supervise(payload)
            # A signal caught during the final sweep still stops the process.
            self._check_received_signal()
            log.info(f"All workers have finished in {time.time() - start_time:.2f} seconds.")

            return {slot: worker.get_saved_result() for slot, worker in sorted(self._workers.items())}
        except BaseException:
            self.force_stop()
            raise
        finally:
            shutdown.restore_signal_handlers(previous_handlers)
            self._workers = {}
            self._launched = False
            self._stopping = False

    def _supervise(self, payload: Any) -> None:
        """Respawns exited workers and kills runaway ones until no worker is active."""
        while True:
            self._check_received_signal()

            active_workers = len(self._workers)
            for slot, worker in self._workers.items():
                if worker.is_alive():
                    if self._is_over_time_limit(worker):
                        log.warning(
                            f"Worker #{slot} (PID {worker.get_child_pid()}) exceeded its "
                            f"{self._time_limit}s time limit. Stopping it."
                        )
                        shutdown.escalate([worker], self._grace_period, config.KILL_REAP_TIMEOUT)
                    continue

                if not worker.is_task_finished():
                    log.warning(f"Worker #{slot} exited before finishing its task. Respawning...")
                    worker.run(payload)
                else:
                    active_workers -= 1

            if active_workers < 1:
                break

            if self._on_tick:
                self._on_tick(self)

            if self._stopping or not self._launched:
                break
            time.sleep(self._poll_interval_ms / 1000)

            self._check_received_signal()
            if self._stopping:
                break

    def _is_over_time_limit(self, worker: Worker) -> bool:
        start_time = worker.get_start_time()
        return bool(self._time_limit) and start_time is not None and time.time() - start_time > self._time_limit

    def force_stop(self) -> bool:
        """
        Stops every worker: the graceful signal first, one grace period, then
        SIGKILL for those still alive. Ends the supervision loop at its next check.

        :return: False if the pool is not running or is already stopping.
        """
        if self._stopping or not self._launched:
            return False
        self._stopping = True

        workers = list(self._workers.values())
        if not workers:
            return True
        log.info(f"Stopping {len(workers)} worker(s)...")
        shutdown.escalate(workers, self._grace_period, config.KILL_REAP_TIMEOUT)
        return True

    #* --- Signals ---
    def _handle_signal(self, signum: int, frame: Any) -> None:
        self._received_signal = signum

    def _check_received_signal(self) -> None:
        """Stops the pool and exits the supervisor if an interrupt signal arrived."""
        signum = self._received_signal
        if signum is None:
            return
        log.warning(f"Signal received: {signal.Signals(signum).name}. Stopping the pool.")
        self.force_stop()
        raise SystemExit(128 + signum)
