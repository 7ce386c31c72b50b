"""In-process rate limiter: per-user concurrency plus per-minute windows."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

import structlog

from llm_dispatch.core.clock import Clock, utc_now
from llm_dispatch.queue.schemas import DispatchConfig, JobKind

logger = structlog.get_logger(__name__)


class Admission(str, Enum):
    """Outcome of an admission check."""

    ADMITTED = "admitted"
    USER_CONCURRENCY = "user_concurrency"
    USER_RATE = "user_rate"
    SYSTEM_BUSY = "system_busy"


@dataclass
class UserRateState:
    in_flight: int = 0
    window_count: int = 0


class RateLimiter:
    """Tracks in-flight and per-window counts per (user, kind) and globally.

    Check-and-increment runs without any await point, so on a single event loop
    two concurrent submissions can never both take the last unit of capacity.
    Exhaustion is reported through return values only; nothing here raises.
    """

    def __init__(self, config: DispatchConfig, clock: Clock | None = None):
        self.config = config
        self._clock = clock or utc_now
        self._users: dict[tuple[str, JobKind], UserRateState] = {}
        self._global_window_count = 0
        self._window_started_at = self._clock()
        self._window_generation = 0

    def admit(self, user_id: str, kind: JobKind, now: datetime | None = None) -> Admission:
        """Admit one job for (user_id, kind) if every ceiling allows it.

        On success the user's in-flight counter and both window counters are
        incremented. On refusal nothing is mutated.

        Args:
            user_id: Submitting user
            kind: Job kind
            now: Current time (for deterministic testing)

        Returns:
            Admission.ADMITTED or the first ceiling that refused
        """
        self._expire_window(now or self._clock())

        limits = self.config.limits(kind)
        state = self._users.get((user_id, kind)) or UserRateState()

        if state.in_flight >= limits.per_user_concurrency_cap:
            return Admission.USER_CONCURRENCY
        if state.window_count >= limits.per_user_requests_per_minute:
            return Admission.USER_RATE
        if self._global_window_count >= self.config.system_requests_per_minute:
            return Admission.SYSTEM_BUSY

        state.in_flight += 1
        state.window_count += 1
        self._users[(user_id, kind)] = state
        self._global_window_count += 1
        return Admission.ADMITTED

    def try_admit(self, user_id: str, kind: JobKind, now: datetime | None = None) -> bool:
        return self.admit(user_id, kind, now) is Admission.ADMITTED

    def release(self, user_id: str, kind: JobKind) -> None:
        """Release one in-flight unit. Clamped at zero."""
        state = self._users.get((user_id, kind))
        if state is None or state.in_flight <= 0:
            logger.warning("rate_limit_release_underflow", user_id=user_id, kind=kind.value)
            return
        state.in_flight -= 1
        self._prune(user_id, kind, state)

    def reset_window(self, now: datetime | None = None) -> None:
        """Zero every per-user window counter and the global counter."""
        self._window_started_at = now or self._clock()
        self._window_generation += 1
        self._global_window_count = 0
        for key, state in list(self._users.items()):
            state.window_count = 0
            self._prune(*key, state)
        logger.debug("rate_limit_window_reset", window_started_at=self._window_started_at.isoformat())

    def in_flight(self, user_id: str, kind: JobKind) -> int:
        state = self._users.get((user_id, kind))
        return state.in_flight if state else 0

    def window_count(self, user_id: str, kind: JobKind) -> int:
        state = self._users.get((user_id, kind))
        return state.window_count if state else 0

    @property
    def global_window_count(self) -> int:
        return self._global_window_count

    @property
    def window_generation(self) -> int:
        """Number of window resets so far, from either the timer or lazy expiry."""
        return self._window_generation

    @property
    def next_reset_at(self) -> datetime:
        return self._window_started_at + timedelta(seconds=self.config.window_seconds)

    def _expire_window(self, now: datetime) -> None:
        # Fallback for a late reset timer
        elapsed = (now - self._window_started_at).total_seconds()
        if elapsed >= self.config.window_seconds:
            self.reset_window(now)

    def _prune(self, user_id: str, kind: JobKind, state: UserRateState) -> None:
        if state.in_flight == 0 and state.window_count == 0:
            self._users.pop((user_id, kind), None)
