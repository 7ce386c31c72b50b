"""Shared test fixtures for all test groups."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from llm_dispatch.executors import FakeExecutor
from llm_dispatch.queue.dispatcher import Dispatcher
from llm_dispatch.queue.schemas import (
    KIND_EXPECTED_DURATION,
    CoachChatPayload,
    DispatchConfig,
    JobKind,
    KindLimits,
)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2030, 6, 15, 10, 30, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ControlledExecutor:
    """Executor whose calls stay pending until the test settles them."""

    def __init__(self):
        self.calls: list[tuple[object, asyncio.Future]] = []

    async def __call__(self, payload):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((payload, future))
        return await future

    @property
    def payloads(self) -> list:
        return [payload for payload, _ in self.calls]

    def succeed(self, index: int, value=None) -> None:
        self.calls[index][1].set_result(value)

    def fail(self, index: int, exc: Exception | None = None) -> None:
        self.calls[index][1].set_exception(exc or RuntimeError("upstream error"))


def make_config(
    pool_size: int = 2,
    per_user_cap: int = 1,
    per_user_rpm: int = 60,
    system_rpm: int = 100,
    retry_budget: int = 2,
    timeout_seconds: float | None = None,
    **overrides: KindLimits,
) -> DispatchConfig:
    """DispatchConfig with the same limits for every kind, unless overridden per kind."""
    kinds = {
        kind: KindLimits(
            pool_size=pool_size,
            per_user_concurrency_cap=per_user_cap,
            per_user_requests_per_minute=per_user_rpm,
            expected_duration_seconds=KIND_EXPECTED_DURATION[kind],
            timeout_seconds=timeout_seconds,
        )
        for kind in JobKind
    }
    for name, limits in overrides.items():
        kinds[JobKind(name)] = limits
    return DispatchConfig(kinds=kinds, system_requests_per_minute=system_rpm, retry_budget=retry_budget)


def chat(message: str = "How much protein do I need?") -> CoachChatPayload:
    return CoachChatPayload(message=message)


@pytest.fixture
def clock():
    """Fresh FakeClock starting at 2030-06-15 10:30 UTC."""
    return FakeClock()


@pytest.fixture
def controlled():
    """Fresh ControlledExecutor."""
    return ControlledExecutor()


@pytest.fixture
def settle():
    """Let pending tasks and callbacks run."""

    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
async def build_dispatcher(clock):
    """Factory: Dispatcher with happy-path fakes for any kind not explicitly bound."""
    created: list[Dispatcher] = []

    def _build(config: DispatchConfig | None = None, **executors) -> Dispatcher:
        bound = {kind: FakeExecutor(kind) for kind in JobKind}
        for name, executor in executors.items():
            bound[JobKind(name)] = executor
        dispatcher = Dispatcher(bound, config=config or make_config(), clock=clock)
        created.append(dispatcher)
        return dispatcher

    yield _build

    for dispatcher in created:
        await dispatcher.stop()


@pytest.fixture
def make_config_fn():
    return make_config


@pytest.fixture
def chat_payload():
    return chat
