"""
forkpool: a process-based worker pool supervisor.

A Supervisor forks N worker processes, runs a task in each, and forks a
worker again whenever it exits before marking its task finished. Worker
state survives those respawns through a per-worker state record.
"""

from .errors import ForkPoolError, InvalidStateError, ProcessTerminationError, StorageUnavailableError
from .supervisor import Supervisor, Worker

__all__ = [
    "Supervisor",
    "Worker",
    "ForkPoolError",
    "InvalidStateError",
    "ProcessTerminationError",
    "StorageUnavailableError",
]
