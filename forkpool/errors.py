"""Exception hierarchy for forkpool."""


class ForkPoolError(RuntimeError):
    """Base class for all errors raised by forkpool."""


class InvalidStateError(ForkPoolError):
    """
    Raised on API misuse: launching a running supervisor, launching without a
    task, or re-running a worker that is alive or that lives in a forked child.
    """


class StorageUnavailableError(ForkPoolError):
    """Raised when a state storage backend cannot be initialized."""


class ProcessTerminationError(ForkPoolError):
    """Raised when a process survives its own termination call."""
