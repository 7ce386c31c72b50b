"""FakeExecutor: scenario-based test double for job executors.

Provides deterministic responses for named scenarios:
- happy_path: Every call succeeds with realistic content
- llm_failure: Every call fails as an upstream API error
- flaky: The first `failures_before_success` calls fail, later calls succeed
- timeout: Every call sleeps past any reasonable timeout

`delay` adds a fixed await before the outcome, to simulate latency.
"""

import asyncio
from typing import Any

from llm_dispatch.queue.schemas import (
    CoachChatPayload,
    FoodAnalysisPayload,
    JobKind,
    PlanGenerationPayload,
)


class FakeExecutor:
    """Async executor double. Records every payload it was called with."""

    VALID_SCENARIOS = {"happy_path", "llm_failure", "flaky", "timeout"}

    def __init__(
        self,
        kind: JobKind,
        scenario: str = "happy_path",
        delay: float = 0.0,
        failures_before_success: int = 2,
    ):
        """Initialize FakeExecutor with a named scenario.

        Raises:
            ValueError: If scenario is not recognized
        """
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(
                f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}"
            )
        self.kind = kind
        self.scenario = scenario
        self.delay = delay
        self.failures_before_success = failures_before_success
        self.calls: list[Any] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def __call__(self, payload: Any) -> Any:
        self.calls.append(payload)
        attempt = len(self.calls)

        if self.scenario == "timeout":
            await asyncio.sleep(3600)

        if self.delay:
            await asyncio.sleep(self.delay)

        if self.scenario == "llm_failure":
            raise RuntimeError("Upstream model API rate limit exceeded. Retry after 60 seconds.")

        if self.scenario == "flaky" and attempt <= self.failures_before_success:
            raise RuntimeError(f"Upstream model API overloaded (attempt {attempt})")

        return self._response(payload)

    def _response(self, payload: Any) -> dict:
        if isinstance(payload, PlanGenerationPayload):
            return {
                "plan": {
                    "daily_calories": 2100,
                    "macros": {"protein_g": 150, "carbs_g": 210, "fat_g": 70},
                    "goals": payload.goals,
                    "weeks": 12,
                }
            }
        if isinstance(payload, CoachChatPayload):
            return {"reply": f"Great question! Let's talk about: {payload.message}"}
        if isinstance(payload, FoodAnalysisPayload):
            return {
                "food_items": [
                    {"name": "Grilled chicken breast", "calories": 280, "confidence": 0.92},
                    {"name": "Brown rice", "calories": 215, "confidence": 0.88},
                ],
                "meal_type": payload.meal_type,
            }
        return {"kind": self.kind.value, "echo": payload}


def fake_executors(scenario: str = "happy_path", delay: float = 0.0) -> dict[JobKind, FakeExecutor]:
    """One FakeExecutor per job kind, all running the same scenario."""
    return {kind: FakeExecutor(kind, scenario=scenario, delay=delay) for kind in JobKind}
