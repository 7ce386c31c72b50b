"""Job record carried through admission, queueing and execution."""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from llm_dispatch.core.exceptions import ExecutorFailure
from llm_dispatch.queue.schemas import JobKind, JobStatus


@dataclass(eq=False)
class Job:
    """One submitted unit of work.

    Retries reuse the same Job, so `id`, `future` and `retries` travel with it
    back onto the queue and the caller only ever holds one result channel.
    """

    user_id: str
    kind: JobKind
    payload: Any
    future: asyncio.Future
    submitted_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    retries: int = 0
    status: JobStatus = JobStatus.SUBMITTED
    enqueued_at: datetime | None = None
    started_at: datetime | None = None
    failures: list[ExecutorFailure] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        return self.retries + 1
