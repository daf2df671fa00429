import signal
import psutil
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List

if TYPE_CHECKING:
    from .worker import Worker

log = logging.getLogger(__name__)

# Signals that ask a process to wind down. SIGUSR1 is what the supervisor
# sends to its workers; the others come from the terminal or the OS.
INTERRUPT_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGUSR1, signal.SIGINT)
GRACEFUL_SIGNAL = signal.SIGUSR1


#* --- Signal Handlers ---
def install_signal_handlers(handler: Callable[[int, Any], Any]) -> Dict[int, Any]:
    """
    Installs one handler for every interrupt signal.

    :param handler: A `signal.signal` compatible callable.
    :return: The previous handlers, keyed by signal number, for `restore_signal_handlers`.
    """
    previous: Dict[int, Any] = {}
    try:
        for signum in INTERRUPT_SIGNALS:
            previous[signum] = signal.signal(signum, handler)
    except ValueError as e:
        # signal.signal() only works from the main thread.
        log.warning(f"Could not install signal handlers: {e}")
        restore_signal_handlers(previous)
        return {}
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    """Puts back handlers returned by `install_signal_handlers`."""
    for signum, handler in previous.items():
        signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


#* --- Escalation ---
def interrupt_worker(worker: "Worker") -> bool:
    """
    Sends the graceful signal to a worker.

    :return: True if the signal was delivered.
    """
    proc = worker.get_process()
    if proc is None or not worker.is_alive():
        return False
    log.info(f"Worker #{worker.get_thread_number()} (PID {proc.pid}): sending {GRACEFUL_SIGNAL.name}...")
    try:
        proc.send_signal(GRACEFUL_SIGNAL)
        return True
    except psutil.NoSuchProcess:
        log.debug(f"Process {proc.pid} no longer exists, skipping {GRACEFUL_SIGNAL.name}.")
        return False


def wait_for_exit(workers: Iterable["Worker"], timeout: float) -> List["Worker"]:
    """
    Waits up to `timeout` seconds for workers to exit, reaping the ones that do.

    :return: The workers still alive after the timeout.
    """
    by_pid = {}
    for worker in workers:
        proc = worker.get_process()
        if proc is not None and worker.is_alive():
            by_pid[proc.pid] = (worker, proc)
    if not by_pid:
        return []

    try:
        gone, alive = psutil.wait_procs([proc for _, proc in by_pid.values()], timeout=timeout)
    except psutil.NoSuchProcess:
        return []
    # wait_procs has already collected the exit status of these.
    for proc in gone:
        by_pid[proc.pid][0]._mark_reaped()
    return [by_pid[proc.pid][0] for proc in alive]


def kill_worker(worker: "Worker", reap_timeout: float = 5) -> bool:
    """
    SIGKILLs a worker that did not exit gracefully and reaps it.

    :param reap_timeout: Seconds to wait for the killed process to disappear.
    :return: True if SIGKILL was sent.
    """
    number = worker.get_thread_number()
    proc = worker.get_process()
    if proc is None or not worker.is_alive():
        log.info(f"Worker #{number}: exited gently, no SIGKILL required.")
        return False

    try:
        proc.kill()
        log.warning(f"Worker #{number} (PID {proc.pid}): did not exit. SIGKILL sent.")
        proc.wait(timeout=reap_timeout)
        worker._mark_reaped()
    except psutil.NoSuchProcess:
        log.debug(f"Process {proc.pid} no longer exists, skipping forceful kill.")
        worker._mark_reaped()
        return False
    except psutil.TimeoutExpired:
        log.error(f"Worker #{number} (PID {proc.pid}) is still running {reap_timeout}s after SIGKILL.")
    return True


def escalate(workers: List["Worker"], grace_period: float, reap_timeout: float = 5) -> None:
    """
    Runs the two-phase termination sequence for the given workers: the graceful
    signal to all of them, one shared grace period, then SIGKILL for survivors.

    :param workers: Workers to stop.
    :param grace_period: Seconds the workers get to exit on their own.
    :param reap_timeout: Seconds to wait for each SIGKILLed worker.
    """
    for worker in workers:
        interrupt_worker(worker)

    log.info(f"Giving {len(workers)} worker(s) {grace_period}s to exit nicely...")
    survivors = wait_for_exit(workers, grace_period)

    if survivors:
        log.warning(f"{len(survivors)} worker(s) did not terminate gracefully. Forcing shutdown...")
    for worker in workers:
        kill_worker(worker, reap_timeout)
