"""Read-only utilization snapshot of a Dispatcher."""

from typing import TYPE_CHECKING

from llm_dispatch.queue.schemas import DispatchStats, JobKind, KindStats, WorkerStats

if TYPE_CHECKING:
    from llm_dispatch.queue.dispatcher import Dispatcher


class StatsReporter:
    """Builds DispatchStats from a dispatcher's pools, queues and counters.

    Reads only. Fields are gathered one after another without locking; the
    result is a monitoring view, not an atomic cut across every counter.
    """

    def __init__(self, dispatcher: "Dispatcher"):
        self.dispatcher = dispatcher

    def kind_snapshot(self, kind: JobKind) -> KindStats:
        d = self.dispatcher
        pool = d.pools[kind]
        counters = d.counters[kind]
        busy = pool.busy_count
        return KindStats(
            workers=WorkerStats(total=pool.size, busy=busy, available=pool.size - busy),
            queue_length=d.queues[kind].length(),
            submitted=counters.submitted,
            completed=counters.completed,
            failed=counters.failed,
            retried=counters.retried,
            rejected=counters.rejected,
            avg_wait_seconds=round(d.estimator.average_wait(kind), 3),
            avg_duration_seconds=round(d.estimator.average_duration(kind), 3),
            estimated_wait_seconds=d.estimate_wait(kind),
            limits=d.config.limits(kind),
        )

    def snapshot(self) -> DispatchStats:
        d = self.dispatcher
        kinds = {kind: self.kind_snapshot(kind) for kind in JobKind}
        return DispatchStats(
            total_submitted=sum(k.submitted for k in kinds.values()),
            total_completed=sum(k.completed for k in kinds.values()),
            total_failed=sum(k.failed for k in kinds.values()),
            total_retried=sum(k.retried for k in kinds.values()),
            total_rejected=sum(k.rejected for k in kinds.values()),
            active_workers=sum(k.workers.busy for k in kinds.values()),
            global_window_count=d.rate_limiter.global_window_count,
            system_requests_per_minute=d.config.system_requests_per_minute,
            kinds=kinds,
            generated_at=d.clock(),
        )
