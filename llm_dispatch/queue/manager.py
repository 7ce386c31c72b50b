"""JobQueue: per-kind FIFO with head reinsertion for retried jobs."""

from collections import deque

from llm_dispatch.queue.job import Job


class JobQueue:
    """Pending jobs for one kind awaiting a free worker slot.

    Fresh submissions join the tail. A job requeued after a retryable failure
    goes to the head, so it runs before anything submitted after it.
    """

    def __init__(self):
        self._jobs: deque[Job] = deque()

    def enqueue_tail(self, job: Job) -> None:
        self._jobs.append(job)

    def enqueue_head(self, job: Job) -> None:
        self._jobs.appendleft(job)

    def dequeue_head(self) -> Job | None:
        """Remove and return the front job, or None if the queue is empty."""
        if not self._jobs:
            return None
        return self._jobs.popleft()

    def length(self) -> int:
        return len(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def drain(self) -> list[Job]:
        """Remove and return every pending job in queue order."""
        jobs = list(self._jobs)
        self._jobs.clear()
        return jobs
