"""Wait time estimator using Exponential Moving Average."""

from llm_dispatch.queue.schemas import DispatchConfig, JobKind


class WaitTimeEstimator:
    """Tracks per-kind EMAs of queue wait and execution duration."""

    def __init__(self, config: DispatchConfig, alpha: float = 0.3):
        self.alpha = alpha  # EMA weight (0.3 = 30% new, 70% historical)
        self._avg_duration = {kind: config.limits(kind).expected_duration_seconds for kind in JobKind}
        self._avg_wait = {kind: 0.0 for kind in JobKind}

    def record_completion(self, kind: JobKind, duration_seconds: float) -> None:
        """Update kind-specific average with a finished attempt's duration.

        Uses EMA formula: new_avg = alpha * new_value + (1 - alpha) * old_avg
        """
        self._avg_duration[kind] = self._ema(self._avg_duration[kind], duration_seconds)

    def record_wait(self, kind: JobKind, wait_seconds: float) -> None:
        """Update kind-specific average with how long a job sat in the queue."""
        self._avg_wait[kind] = self._ema(self._avg_wait[kind], wait_seconds)

    def average_duration(self, kind: JobKind) -> float:
        return self._avg_duration[kind]

    def average_wait(self, kind: JobKind) -> float:
        return self._avg_wait[kind]

    def estimate_wait_time(self, kind: JobKind, position: int, active_workers: int = 1) -> int:
        """Estimate wait time in seconds given queue position.

        Formula: wait_time = avg_duration * position / workers

        Args:
            kind: Job kind
            position: Position in queue (1-indexed)
            active_workers: Number of worker slots serving the queue

        Returns:
            Estimated wait time in seconds
        """
        workers = max(active_workers, 1)
        return int((self._avg_duration[kind] * position) / workers)

    def _ema(self, current: float, value: float) -> float:
        return self.alpha * value + (1 - self.alpha) * current
