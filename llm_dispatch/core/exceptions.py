class DispatchError(Exception):
    """Base exception for the dispatcher."""

    pass


class RateLimitExceeded(DispatchError):
    """Raised when a user's concurrency or per-minute ceiling for a kind is hit."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Rate limit exceeded for {kind}. Please wait a moment.")


class SystemBusy(DispatchError):
    """Raised when the system-wide per-minute ceiling is hit."""

    def __init__(self):
        super().__init__("System is busy. Please try again in a moment.")


class ExecutorFailure(DispatchError):
    """Raised when a single executor attempt fails."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Executor failed: {type(cause).__name__}: {cause}")


class FinalDispatchFailure(DispatchError):
    """Raised when a job exhausts its retry budget."""

    def __init__(self, cause: BaseException, attempts: int, failures: list[ExecutorFailure] | None = None):
        self.cause = cause
        self.attempts = attempts
        self.failures = list(failures or [])  # One per failed attempt, oldest first
        super().__init__(f"Job failed after {attempts} attempts: {cause}")


class DispatcherShutdown(DispatchError):
    """Raised when the dispatcher stops before a job settles."""

    pass


class SlotStateError(DispatchError):
    """Raised when a worker slot is acquired while already busy."""

    pass
