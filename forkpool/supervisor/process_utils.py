import os
import sys
import enum
import psutil
import logging
import setproctitle
from typing import NamedTuple, Optional

from forkpool.errors import ProcessTerminationError

log = logging.getLogger(__name__)


class Role(enum.Enum):
    PARENT = "parent"
    CHILD = "child"


class ForkResult(NamedTuple):
    """What fork() returned, seen from the side that received it."""
    role: Role
    child_pid: int = 0

    @property
    def is_child(self) -> bool:
        return self.role is Role.CHILD


#* --- Process Creation ---
def fork_process() -> ForkResult:
    """
    Forks the current process.

    Standard streams are flushed first so buffered output is not written
    twice, once by each side.

    :return: ForkResult tagged CHILD in the new process, PARENT with the child's pid otherwise.
    """
    _flush_std_streams()
    pid = os.fork()
    if pid == 0:
        return ForkResult(Role.CHILD)
    return ForkResult(Role.PARENT, pid)


def start_new_session() -> None:
    """Detaches the calling child from the terminal's process group."""
    try:
        os.setsid()
    except OSError as e:
        log.debug(f"setsid() failed in pid {os.getpid()}: {e}")


def terminate_current_process(exit_code: int = 0) -> None:
    """
    Ends the current process immediately, skipping atexit hooks and object
    finalizers inherited from the parent. Logging is shut down first so
    buffered records reach their handlers.

    :param exit_code: The process exit status.
    :raises ProcessTerminationError: If the process is somehow still running.
    """
    logging.shutdown()
    _flush_std_streams()
    os._exit(exit_code)
    raise ProcessTerminationError(f"os._exit() returned in pid {os.getpid()}. This should never happen!")


def _flush_std_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            if stream:
                stream.flush()
        except (OSError, ValueError):
            pass


#* --- Process Status & Monitoring ---
def reap_nonblocking(pid: int) -> bool:
    """
    Polls a child with waitpid(WNOHANG), reaping it if it has exited.

    :param pid: The child's process id.
    :return: True if the child is still running, False if it exited or is not our child.
    """
    try:
        reaped_pid, _ = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        return False
    return reaped_pid == 0


def get_process_from_pid(pid: int) -> Optional[psutil.Process]:
    """A wrapper for psutil.Process that returns None for vanished processes."""
    try:
        return psutil.Process(pid)
    except psutil.NoSuchProcess:
        return None


#* --- Process Title ---
def describe_command_line() -> str:
    """Returns the interpreter's argv as one string, for process titles."""
    return " ".join(sys.argv)


def set_process_title(title: str) -> None:
    """Sets the title shown for this process by ps and top."""
    setproctitle.setproctitle(title)
