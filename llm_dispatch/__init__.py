"""Concurrent, rate-limited dispatcher for AI plan, chat and food-analysis jobs."""

from llm_dispatch.core.exceptions import (
    DispatchError,
    DispatcherShutdown,
    FinalDispatchFailure,
    RateLimitExceeded,
    SystemBusy,
)
from llm_dispatch.queue.dispatcher import Dispatcher
from llm_dispatch.queue.schemas import DispatchConfig, DispatchStats, JobKind, KindLimits

__all__ = [
    "DispatchConfig",
    "DispatchError",
    "DispatchStats",
    "Dispatcher",
    "DispatcherShutdown",
    "FinalDispatchFailure",
    "JobKind",
    "KindLimits",
    "RateLimitExceeded",
    "SystemBusy",
]
