"""Tests for wait time estimator with EMA."""

import pytest

from llm_dispatch.queue.estimator import WaitTimeEstimator
from llm_dispatch.queue.schemas import DispatchConfig, JobKind

pytestmark = pytest.mark.unit


@pytest.fixture
def estimator():
    """Provide WaitTimeEstimator seeded from the default config."""
    return WaitTimeEstimator(DispatchConfig())


def test_default_duration_plan_generation(estimator):
    """Plan generation seeds at 50s."""
    assert estimator.estimate_wait_time(JobKind.PLAN_GENERATION, position=1) == 50


def test_default_duration_coach_chat(estimator):
    """Coach chat seeds at 3s."""
    assert estimator.estimate_wait_time(JobKind.COACH_CHAT, position=1) == 3


def test_default_duration_food_analysis(estimator):
    """Food analysis seeds at 15s."""
    assert estimator.estimate_wait_time(JobKind.FOOD_ANALYSIS, position=1) == 15


def test_record_completion_updates_ema(estimator):
    """record_completion moves the average 30% toward the new sample."""
    # EMA: 0.3 * 60 + 0.7 * 50 (default) = 18 + 35 = 53
    estimator.record_completion(JobKind.PLAN_GENERATION, 60)
    assert estimator.average_duration(JobKind.PLAN_GENERATION) == pytest.approx(53.0)

    # EMA: 0.3 * 20 + 0.7 * 53 = 6 + 37.1 = 43.1
    estimator.record_completion(JobKind.PLAN_GENERATION, 20)
    assert estimator.average_duration(JobKind.PLAN_GENERATION) == pytest.approx(43.1)


def test_kinds_are_tracked_independently(estimator):
    estimator.record_completion(JobKind.COACH_CHAT, 13)

    assert estimator.average_duration(JobKind.COACH_CHAT) == pytest.approx(6.0)
    assert estimator.average_duration(JobKind.FOOD_ANALYSIS) == pytest.approx(15.0)


def test_wait_average_starts_at_zero(estimator):
    assert estimator.average_wait(JobKind.COACH_CHAT) == 0.0

    estimator.record_wait(JobKind.COACH_CHAT, 10)
    assert estimator.average_wait(JobKind.COACH_CHAT) == pytest.approx(3.0)


def test_estimate_scales_with_position_and_workers(estimator):
    """wait = avg_duration * position / workers, truncated to whole seconds."""
    assert estimator.estimate_wait_time(JobKind.PLAN_GENERATION, position=6, active_workers=3) == 100
    assert estimator.estimate_wait_time(JobKind.FOOD_ANALYSIS, position=1, active_workers=2) == 7


def test_estimate_guards_against_zero_workers(estimator):
    assert estimator.estimate_wait_time(JobKind.COACH_CHAT, position=2, active_workers=0) == 6
