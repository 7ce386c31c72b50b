"""Dispatcher: admission, per-kind queues and worker pools, retries.

Runs on a single asyncio event loop. Every bookkeeping step (admission, enqueue,
dequeue, slot acquire/release, counters) is synchronous code with no await
between its read and its write, so submissions, completions and the background
timers never interleave inside a mutation. The executor call is the only
suspension point and holds no bookkeeping state while it runs.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from llm_dispatch.core.clock import Clock, utc_now
from llm_dispatch.core.exceptions import (
    DispatcherShutdown,
    ExecutorFailure,
    FinalDispatchFailure,
    RateLimitExceeded,
    SystemBusy,
)
from llm_dispatch.queue.estimator import WaitTimeEstimator
from llm_dispatch.queue.job import Job
from llm_dispatch.queue.manager import JobQueue
from llm_dispatch.queue.pool import WorkerPool, WorkerSlot
from llm_dispatch.queue.rate_limiter import Admission, RateLimiter
from llm_dispatch.queue.schemas import DispatchConfig, DispatchStats, JobKind, JobStatus, coerce_payload
from llm_dispatch.queue.state_machine import JobStateMachine
from llm_dispatch.queue.stats import StatsReporter

logger = structlog.get_logger(__name__)

Executor = Callable[[Any], Awaitable[Any]]


@dataclass
class KindCounters:
    """Cumulative per-kind counters. Never reset by the rate-limit window."""

    submitted: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    rejected: int = 0


class Dispatcher:
    """Routes jobs to per-kind worker pools under per-user and global rate limits.

    Construct one per process in the composition root and inject it where needed.

    Args:
        executors: Exactly one async executor per JobKind
        config: Capacity configuration (reference defaults when omitted)
        clock: Injectable time source (for deterministic testing)
    """

    def __init__(
        self,
        executors: Mapping[JobKind, Executor],
        config: DispatchConfig | None = None,
        clock: Clock | None = None,
    ):
        missing = [kind.value for kind in JobKind if kind not in executors]
        unknown = [str(kind) for kind in executors if kind not in set(JobKind)]
        if missing or unknown:
            raise ValueError(f"Executors must cover every job kind exactly (missing={missing}, unknown={unknown})")

        self.config = config or DispatchConfig()
        self.clock = clock or utc_now
        self._executors = dict(executors)

        self.rate_limiter = RateLimiter(self.config, self.clock)
        self.pools = {kind: WorkerPool(kind, self.config.limits(kind).pool_size) for kind in JobKind}
        self.queues = {kind: JobQueue() for kind in JobKind}
        self.counters = {kind: KindCounters() for kind in JobKind}
        self.state_machine = JobStateMachine()
        self.estimator = WaitTimeEstimator(self.config)

        self._executions: set[asyncio.Task] = set()
        self._timers: list[asyncio.Task] = []
        self._stopping = False

        logger.info(
            "dispatcher_initialized",
            pools={kind.value: pool.size for kind, pool in self.pools.items()},
            system_requests_per_minute=self.config.system_requests_per_minute,
            retry_budget=self.config.retry_budget,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the window-reset and fallback scheduling timers."""
        if self._timers:
            return
        self._stopping = False
        self._timers = [
            asyncio.create_task(self._window_reset_loop(), name="dispatch-window-reset"),
            asyncio.create_task(self._schedule_loop(), name="dispatch-schedule-sweep"),
        ]
        logger.info("dispatcher_started")

    async def stop(self) -> None:
        """Stop timers and settle every pending job with DispatcherShutdown."""
        self._stopping = True

        timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

        cancelled_queued = self._drain_queues()

        executions = list(self._executions)
        for task in executions:
            task.cancel()
        await asyncio.gather(*executions, return_exceptions=True)
        cancelled_queued += self._drain_queues()

        # Tasks cancelled before their first step never reach their own cleanup
        cancelled_running = 0
        for kind, pool in self.pools.items():
            for slot in pool.slots:
                if slot.busy and slot.job is not None:
                    job = slot.job
                    pool.release(slot)
                    self.rate_limiter.release(job.user_id, kind)
                    self._cancel(job)
                    cancelled_running += 1

        logger.info(
            "dispatcher_stopped",
            cancelled_queued=cancelled_queued,
            cancelled_running=cancelled_running,
        )

    async def __aenter__(self) -> "Dispatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ── Submission ───────────────────────────────────────────────────────────

    def submit(self, user_id: str, kind: JobKind | str, payload: Any) -> asyncio.Future:
        """Admit a job and return a future that settles with its outcome.

        Never blocks. Admission failures come back as an already-failed future
        (RateLimitExceeded or SystemBusy); nothing is queued in that case.

        Args:
            user_id: Submitting user (already authenticated upstream)
            kind: Job kind
            payload: The kind's payload model, or a dict that validates into it

        Returns:
            Future resolving to the executor result, or failing with a DispatchError

        Raises:
            ValueError: If user_id is empty, kind is unknown, or payload is invalid
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")
        kind = JobKind(kind)
        payload = coerce_payload(kind, payload)

        future = asyncio.get_running_loop().create_future()
        now = self.clock()
        job = Job(user_id=user_id, kind=kind, payload=payload, future=future, submitted_at=now)
        counters = self.counters[kind]

        if self._stopping:
            self.state_machine.transition(job, JobStatus.REJECTED)
            future.set_exception(DispatcherShutdown("Dispatcher is stopped"))
            return future

        admission = self.rate_limiter.admit(user_id, kind, now)
        if admission is not Admission.ADMITTED:
            self.state_machine.transition(job, JobStatus.REJECTED)
            counters.rejected += 1
            logger.info(
                "job_rejected",
                job_id=job.id,
                user_id=user_id,
                kind=kind.value,
                reason=admission.value,
            )
            if admission is Admission.SYSTEM_BUSY:
                future.set_exception(SystemBusy())
            else:
                future.set_exception(RateLimitExceeded(kind.value))
            return future

        self._enqueue(job, head=False)
        counters.submitted += 1
        logger.info(
            "job_admitted",
            job_id=job.id,
            user_id=user_id,
            kind=kind.value,
            queue_length=self.queues[kind].length(),
        )

        self._schedule(kind)
        return future

    # ── Scheduling ───────────────────────────────────────────────────────────

    def schedule(self, kind: JobKind | None = None) -> None:
        """Run the scheduling pass for one kind, or for every kind."""
        for k in [kind] if kind is not None else list(JobKind):
            self._schedule(k)

    def _schedule(self, kind: JobKind) -> None:
        if self._stopping:
            return
        pool = self.pools[kind]
        queue = self.queues[kind]
        while queue.length() > 0:
            slot = pool.find_free()
            if slot is None:
                return
            job = queue.dequeue_head()
            self._start(slot, job)

    def _enqueue(self, job: Job, head: bool) -> None:
        self.state_machine.transition(job, JobStatus.QUEUED)
        job.enqueued_at = self.clock()
        queue = self.queues[job.kind]
        if head:
            queue.enqueue_head(job)
        else:
            queue.enqueue_tail(job)

    def _start(self, slot: WorkerSlot, job: Job) -> None:
        now = self.clock()
        self.pools[job.kind].acquire(slot, job, now)
        self.state_machine.transition(job, JobStatus.EXECUTING)
        job.started_at = now
        if job.enqueued_at is not None:
            self.estimator.record_wait(job.kind, (now - job.enqueued_at).total_seconds())

        logger.debug("job_started", job_id=job.id, kind=job.kind.value, slot_id=slot.id, attempt=job.attempts)

        task = asyncio.create_task(self._execute(slot, job), name=f"dispatch-{job.kind.value}-{job.id}")
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)

    # ── Execution ────────────────────────────────────────────────────────────

    async def _execute(self, slot: WorkerSlot, job: Job) -> None:
        executor = self._executors[job.kind]
        timeout = self.config.limits(job.kind).timeout_seconds

        with structlog.contextvars.bound_contextvars(job_id=job.id, kind=job.kind.value):
            try:
                if timeout is not None:
                    result = await asyncio.wait_for(executor(job.payload), timeout=timeout)
                else:
                    result = await executor(job.payload)
            except asyncio.CancelledError as exc:
                if self._stopping or asyncio.current_task().cancelling():
                    raise
                # Raised by the executor itself, not a cancellation of this task
                self._on_failure(slot, job, exc)
            except Exception as exc:
                self._on_failure(slot, job, exc)
            else:
                self._on_success(slot, job, result)

    def _on_success(self, slot: WorkerSlot, job: Job, result: Any) -> None:
        self._record_duration(job)
        self.state_machine.transition(job, JobStatus.COMPLETED)
        self.counters[job.kind].completed += 1
        if not job.future.done():
            job.future.set_result(result)

        logger.info("job_completed", job_id=job.id, user_id=job.user_id, kind=job.kind.value, attempts=job.attempts)
        self._finish(slot, job)

    def _on_failure(self, slot: WorkerSlot, job: Job, exc: BaseException) -> None:
        self._record_duration(job)
        failure = ExecutorFailure(exc)
        job.failures.append(failure)

        if job.retries < self.config.retry_budget:
            # Same admitted unit: the slot is freed, the in-flight count is kept
            job.retries += 1
            self.counters[job.kind].retried += 1
            self.state_machine.transition(job, JobStatus.RETRYING)
            logger.warning(
                "job_retrying",
                job_id=job.id,
                user_id=job.user_id,
                kind=job.kind.value,
                retry=job.retries,
                error=str(failure),
                error_type=type(exc).__name__,
            )
            self.pools[job.kind].release(slot)
            self._enqueue(job, head=True)
            self._schedule(job.kind)
            return

        self.state_machine.transition(job, JobStatus.FAILED)
        self.counters[job.kind].failed += 1
        logger.error(
            "job_failed",
            job_id=job.id,
            user_id=job.user_id,
            kind=job.kind.value,
            attempts=job.attempts,
            error=str(exc),
            error_type=type(exc).__name__,
            attempt_errors=[str(f) for f in job.failures],
        )
        if not job.future.done():
            job.future.set_exception(FinalDispatchFailure(exc, job.attempts, failures=job.failures))
        self._finish(slot, job)

    def _finish(self, slot: WorkerSlot, job: Job) -> None:
        self.pools[job.kind].release(slot)
        self.rate_limiter.release(job.user_id, job.kind)
        self._schedule(job.kind)

    def _drain_queues(self) -> int:
        drained = 0
        for kind, queue in self.queues.items():
            for job in queue.drain():
                self._cancel(job)
                self.rate_limiter.release(job.user_id, kind)
                drained += 1
        return drained

    def _cancel(self, job: Job) -> None:
        self.state_machine.transition(job, JobStatus.CANCELLED)
        if not job.future.done():
            job.future.set_exception(DispatcherShutdown("Dispatcher stopped before the job finished"))

    def _record_duration(self, job: Job) -> None:
        if job.started_at is not None:
            self.estimator.record_completion(job.kind, (self.clock() - job.started_at).total_seconds())

    # ── Background timers ────────────────────────────────────────────────────

    async def _window_reset_loop(self) -> None:
        limiter = self.rate_limiter
        while True:
            generation = limiter.window_generation
            delay = (limiter.next_reset_at - self.clock()).total_seconds()
            await asyncio.sleep(max(delay, 0.0))
            if limiter.window_generation != generation:
                # Reset lazily while sleeping; wait for the new window to end
                continue
            limiter.reset_window()
            logger.info("rate_limits_reset")

    async def _schedule_loop(self) -> None:
        # Fallback sweep; submissions and releases schedule directly
        while True:
            await asyncio.sleep(self.config.schedule_interval_seconds)
            try:
                self.schedule()
            except Exception as exc:
                logger.error("schedule_sweep_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)

    # ── Monitoring ───────────────────────────────────────────────────────────

    def get_stats(self) -> DispatchStats:
        return StatsReporter(self).snapshot()

    def estimate_wait(self, kind: JobKind, position: int | None = None) -> int:
        """Estimated seconds before a job at `position` starts executing.

        Args:
            kind: Job kind
            position: 1-indexed queue position (defaults to a new submission's)
        """
        pool = self.pools[kind]
        if position is None:
            position = self.queues[kind].length() + 1
        if position <= pool.free_count:
            return 0
        return self.estimator.estimate_wait_time(kind, position, pool.size)
