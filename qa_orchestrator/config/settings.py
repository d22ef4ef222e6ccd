from pydantic_settings import BaseSettings
from typing import Literal, Optional


class Settings(BaseSettings):
    # API Configuration
    debug: bool = False
    environment: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"

    # AI provider: "openai" talks to a real endpoint, "stub" returns canned JSON
    ai_provider: str = "openai"
    ai_dependency_name: str = "ai-provider"
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.3
    openai_max_tokens: int = 4096

    # Circuit breaker
    failure_rate_threshold: float = 50.0
    wait_duration_in_open_state_s: float = 60.0
    permitted_calls_in_half_open: int = 3
    sliding_window_size: int = 10
    minimum_number_of_calls: Optional[int] = None

    # Rate limiter
    limit_for_period: int = 10
    limit_refresh_period_s: float = 1.0
    rate_limiter_timeout_s: float = 5.0

    # Retry
    max_retry_attempts: int = 3
    retry_wait_duration_ms: int = 500

    # Bulkhead
    max_concurrent_calls: int = 5
    bulkhead_max_wait_duration_ms: int = 1000

    # Hard timeout applied to every AI call
    ai_call_timeout_s: float = 60.0

    # Spec fetching and execution
    spec_fetch_timeout_s: float = 30.0
    execution_request_timeout_s: float = 30.0

    # Orchestration policy
    # "advance" -> QA_EVAL_DONE, "complete" -> COMPLETE, "retry" -> stay in QA_EVAL_IN_PROGRESS
    evaluation_degraded_policy: Literal["advance", "complete", "retry"] = "advance"
    fail_generation_on_degraded: bool = False
    max_parallel_packages: int = 4

    # Database Configuration
    database_url: str = "sqlite:///./data/qa_packages.db"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
