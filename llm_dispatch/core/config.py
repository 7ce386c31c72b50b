from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from llm_dispatch.queue.schemas import (
    KIND_EXPECTED_DURATION,
    KIND_POOL_SIZE,
    KIND_REQUESTS_PER_MINUTE,
    PER_USER_CONCURRENCY_CAP,
    RETRY_BUDGET,
    SCHEDULE_INTERVAL_SECONDS,
    SYSTEM_REQUESTS_PER_MINUTE,
    WINDOW_SECONDS,
    DispatchConfig,
    JobKind,
    KindLimits,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "LLM Dispatch"
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = True

    # API
    frontend_url: str = "http://localhost:8081"

    # Global limits
    system_requests_per_minute: int = SYSTEM_REQUESTS_PER_MINUTE
    retry_budget: int = RETRY_BUDGET
    rate_limit_window_seconds: float = WINDOW_SECONDS
    schedule_interval_seconds: float = SCHEDULE_INTERVAL_SECONDS
    per_user_concurrency_cap: int = PER_USER_CONCURRENCY_CAP

    # Plan generation
    plan_generation_pool_size: int = KIND_POOL_SIZE[JobKind.PLAN_GENERATION]
    plan_generation_requests_per_minute: int = KIND_REQUESTS_PER_MINUTE[JobKind.PLAN_GENERATION]
    plan_generation_timeout_seconds: float | None = None

    # Coach chat
    coach_chat_pool_size: int = KIND_POOL_SIZE[JobKind.COACH_CHAT]
    coach_chat_requests_per_minute: int = KIND_REQUESTS_PER_MINUTE[JobKind.COACH_CHAT]
    coach_chat_timeout_seconds: float | None = None

    # Food analysis
    food_analysis_pool_size: int = KIND_POOL_SIZE[JobKind.FOOD_ANALYSIS]
    food_analysis_requests_per_minute: int = KIND_REQUESTS_PER_MINUTE[JobKind.FOOD_ANALYSIS]
    food_analysis_timeout_seconds: float | None = None

    def dispatch_config(self) -> DispatchConfig:
        """Build the immutable DispatchConfig from env-overridable settings."""
        kinds = {
            kind: KindLimits(
                pool_size=getattr(self, f"{kind.value}_pool_size"),
                per_user_concurrency_cap=self.per_user_concurrency_cap,
                per_user_requests_per_minute=getattr(self, f"{kind.value}_requests_per_minute"),
                expected_duration_seconds=KIND_EXPECTED_DURATION[kind],
                timeout_seconds=getattr(self, f"{kind.value}_timeout_seconds"),
            )
            for kind in JobKind
        }
        return DispatchConfig(
            kinds=kinds,
            system_requests_per_minute=self.system_requests_per_minute,
            retry_budget=self.retry_budget,
            window_seconds=self.rate_limit_window_seconds,
            schedule_interval_seconds=self.schedule_interval_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
