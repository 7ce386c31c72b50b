"""Dispatch schemas, per-kind capacity constants, and typed job payloads."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobKind(str, Enum):
    """Closed set of job kinds. Each kind owns its pool, queue and limits."""

    PLAN_GENERATION = "plan_generation"
    COACH_CHAT = "coach_chat"
    FOOD_ANALYSIS = "food_analysis"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    SUBMITTED = "submitted"
    QUEUED = "queued"
    EXECUTING = "executing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"  # Admission refused
    CANCELLED = "cancelled"  # Dispatcher stopped first


# Per-kind pool sizes (max concurrent executions system-wide)
KIND_POOL_SIZE = {
    JobKind.PLAN_GENERATION: 12,
    JobKind.COACH_CHAT: 15,
    JobKind.FOOD_ANALYSIS: 8,
}

# Per-user requests-per-minute ceilings
KIND_REQUESTS_PER_MINUTE = {
    JobKind.PLAN_GENERATION: 60,
    JobKind.COACH_CHAT: 60,
    JobKind.FOOD_ANALYSIS: 40,
}

# Typical execution time, seeds the duration estimate (seconds)
KIND_EXPECTED_DURATION = {
    JobKind.PLAN_GENERATION: 50.0,
    JobKind.COACH_CHAT: 3.0,
    JobKind.FOOD_ANALYSIS: 15.0,
}

PER_USER_CONCURRENCY_CAP = 1
SYSTEM_REQUESTS_PER_MINUTE = 100
RETRY_BUDGET = 2
WINDOW_SECONDS = 60.0
SCHEDULE_INTERVAL_SECONDS = 1.0


class KindLimits(BaseModel):
    """Static capacity configuration for one job kind."""

    model_config = ConfigDict(frozen=True)

    pool_size: int = Field(gt=0)
    per_user_concurrency_cap: int = Field(default=PER_USER_CONCURRENCY_CAP, gt=0)
    per_user_requests_per_minute: int = Field(gt=0)
    expected_duration_seconds: float = Field(default=10.0, gt=0)
    timeout_seconds: float | None = Field(default=None, gt=0)


def _default_kinds() -> dict[JobKind, KindLimits]:
    return {
        kind: KindLimits(
            pool_size=KIND_POOL_SIZE[kind],
            per_user_requests_per_minute=KIND_REQUESTS_PER_MINUTE[kind],
            expected_duration_seconds=KIND_EXPECTED_DURATION[kind],
        )
        for kind in JobKind
    }


class DispatchConfig(BaseModel):
    """Immutable dispatcher configuration, supplied at construction."""

    model_config = ConfigDict(frozen=True)

    kinds: dict[JobKind, KindLimits] = Field(default_factory=_default_kinds)
    system_requests_per_minute: int = Field(default=SYSTEM_REQUESTS_PER_MINUTE, gt=0)
    retry_budget: int = Field(default=RETRY_BUDGET, ge=0)
    window_seconds: float = Field(default=WINDOW_SECONDS, gt=0)
    schedule_interval_seconds: float = Field(default=SCHEDULE_INTERVAL_SECONDS, gt=0)

    @model_validator(mode="after")
    def _every_kind_configured(self) -> "DispatchConfig":
        missing = [kind.value for kind in JobKind if kind not in self.kinds]
        if missing:
            raise ValueError(f"Missing limits for job kinds: {missing}")
        return self

    def limits(self, kind: JobKind) -> KindLimits:
        return self.kinds[kind]


# ──────────────────────────────────────────────────────────────────────────────
# Typed payloads
#
# Discriminated on `kind` so each JobKind carries its own payload shape.
# ──────────────────────────────────────────────────────────────────────────────


class PlanGenerationPayload(BaseModel):
    """Inputs for generating a nutrition/fitness plan from a user profile."""

    kind: Literal[JobKind.PLAN_GENERATION] = JobKind.PLAN_GENERATION
    profile: dict[str, Any]
    goals: list[str] = Field(default_factory=list)


class CoachChatPayload(BaseModel):
    """One coach chat turn."""

    kind: Literal[JobKind.COACH_CHAT] = JobKind.COACH_CHAT
    message: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    conversation_history: list[dict[str, Any]] = Field(default_factory=list)


class FoodAnalysisPayload(BaseModel):
    """A food photo to analyse."""

    kind: Literal[JobKind.FOOD_ANALYSIS] = JobKind.FOOD_ANALYSIS
    image_base64: str = Field(min_length=1)
    meal_type: str | None = None


JobPayload = Annotated[
    Union[PlanGenerationPayload, CoachChatPayload, FoodAnalysisPayload],
    Field(discriminator="kind"),
]

PAYLOAD_MODELS: dict[JobKind, type[BaseModel]] = {
    JobKind.PLAN_GENERATION: PlanGenerationPayload,
    JobKind.COACH_CHAT: CoachChatPayload,
    JobKind.FOOD_ANALYSIS: FoodAnalysisPayload,
}


def coerce_payload(kind: JobKind, payload: Any) -> BaseModel:
    """Validate a payload against the model bound to `kind`.

    Args:
        kind: Job kind the payload was submitted under
        payload: Payload model instance or plain dict

    Returns:
        The kind's payload model instance

    Raises:
        ValueError: If the payload belongs to another kind or fails validation
    """
    model = PAYLOAD_MODELS[kind]
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        raise ValueError(f"{type(payload).__name__} cannot be submitted as {kind.value}")
    if isinstance(payload, dict):
        declared = payload.get("kind", kind.value)
        if declared != kind.value:
            raise ValueError(f"Payload declares kind '{declared}' but was submitted as {kind.value}")
        return model.model_validate({**payload, "kind": kind})
    raise ValueError(f"Unsupported payload type for {kind.value}: {type(payload).__name__}")


# ──────────────────────────────────────────────────────────────────────────────
# Stats
# ──────────────────────────────────────────────────────────────────────────────


class WorkerStats(BaseModel):
    total: int
    busy: int
    available: int


class KindStats(BaseModel):
    """Utilization snapshot for one job kind."""

    workers: WorkerStats
    queue_length: int
    submitted: int
    completed: int
    failed: int
    retried: int
    rejected: int
    avg_wait_seconds: float
    avg_duration_seconds: float
    estimated_wait_seconds: int  # For a job submitted now
    limits: KindLimits


class DispatchStats(BaseModel):
    """Process-wide monitoring view returned by get_stats()."""

    total_submitted: int
    total_completed: int
    total_failed: int
    total_retried: int
    total_rejected: int
    active_workers: int
    global_window_count: int
    system_requests_per_minute: int
    kinds: dict[JobKind, KindStats]
    generated_at: datetime
