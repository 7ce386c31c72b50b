"""Fixed-size worker pool, one per job kind."""

from dataclasses import dataclass
from datetime import datetime

import structlog

from llm_dispatch.core.exceptions import SlotStateError
from llm_dispatch.queue.job import Job
from llm_dispatch.queue.schemas import JobKind

logger = structlog.get_logger(__name__)


@dataclass(eq=False)
class WorkerSlot:
    id: str
    busy: bool = False
    job: Job | None = None
    last_started_at: datetime | None = None


class WorkerPool:
    """Interchangeable execution slots for one kind. Size is fixed at construction."""

    def __init__(self, kind: JobKind, size: int):
        if size <= 0:
            raise ValueError(f"Pool size for {kind.value} must be positive, got {size}")
        self.kind = kind
        self.slots = tuple(WorkerSlot(id=f"{kind.value}_worker_{i}") for i in range(size))

    @property
    def size(self) -> int:
        return len(self.slots)

    @property
    def busy_count(self) -> int:
        return sum(1 for slot in self.slots if slot.busy)

    @property
    def free_count(self) -> int:
        return self.size - self.busy_count

    def find_free(self) -> WorkerSlot | None:
        """Return the first free slot, or None when all are busy."""
        for slot in self.slots:
            if not slot.busy:
                return slot
        return None

    def acquire(self, slot: WorkerSlot, job: Job, now: datetime | None = None) -> None:
        """Mark a free slot busy with `job`.

        Raises:
            SlotStateError: If the slot is already busy
        """
        if slot.busy:
            raise SlotStateError(f"Slot {slot.id} is already running job {slot.job.id if slot.job else None}")
        slot.busy = True
        slot.job = job
        slot.last_started_at = now

    def release(self, slot: WorkerSlot) -> None:
        """Free a slot. Releasing a free slot is a logged no-op."""
        if not slot.busy:
            logger.warning("worker_slot_double_release", slot_id=slot.id, kind=self.kind.value)
            return
        slot.busy = False
        slot.job = None
