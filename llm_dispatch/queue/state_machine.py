"""Job state machine."""

import structlog

from llm_dispatch.queue.job import Job
from llm_dispatch.queue.schemas import JobStatus

logger = structlog.get_logger(__name__)


class JobStateMachine:
    """Validates job state transitions."""

    # Valid state transitions
    TRANSITIONS = {
        JobStatus.SUBMITTED: [JobStatus.QUEUED, JobStatus.REJECTED],
        JobStatus.QUEUED: [JobStatus.EXECUTING, JobStatus.CANCELLED],
        JobStatus.EXECUTING: [
            JobStatus.COMPLETED,
            JobStatus.RETRYING,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        ],
        JobStatus.RETRYING: [JobStatus.QUEUED, JobStatus.CANCELLED],  # Back to the queue head
        JobStatus.COMPLETED: [],  # Terminal state
        JobStatus.FAILED: [],  # Terminal state
        JobStatus.REJECTED: [],  # Terminal state
        JobStatus.CANCELLED: [],  # Terminal state
    }

    TERMINAL = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

    def can_transition(self, current: JobStatus, new_status: JobStatus) -> bool:
        return new_status in self.TRANSITIONS.get(current, [])

    def transition(self, job: Job, new_status: JobStatus) -> bool:
        """Move `job` to `new_status` if the transition is valid.

        Args:
            job: Job to update
            new_status: Target status

        Returns:
            True if the transition was applied, False if it was invalid
        """
        if not self.can_transition(job.status, new_status):
            logger.warning(
                "job_invalid_transition",
                job_id=job.id,
                current=job.status.value,
                requested=new_status.value,
            )
            return False

        job.status = new_status
        return True

    def is_terminal(self, job: Job) -> bool:
        return job.status in self.TERMINAL
