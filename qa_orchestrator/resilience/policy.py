from dataclasses import dataclass
from typing import Optional

from qa_orchestrator.core.exceptions import InvalidPolicyError


@dataclass(frozen=True)
class InvocationPolicy:
    """Guard configuration for one named downstream dependency.

    Durations are in seconds unless the field name says otherwise. The
    instance validates itself on construction so a bad value fails at
    startup rather than on the first call.
    """

    failure_rate_threshold: float = 50.0
    wait_duration_in_open_state_s: float = 60.0
    permitted_calls_in_half_open: int = 3
    sliding_window_size: int = 10
    minimum_number_of_calls: Optional[int] = None
    limit_for_period: int = 10
    limit_refresh_period_s: float = 1.0
    rate_limiter_timeout_s: float = 5.0
    max_retry_attempts: int = 3
    retry_wait_duration_ms: int = 500
    max_concurrent_calls: int = 5
    bulkhead_max_wait_duration_ms: int = 1000
    call_timeout_s: float = 60.0

    def __post_init__(self):
        if not 0 < self.failure_rate_threshold <= 100:
            raise InvalidPolicyError("failure_rate_threshold must be in (0, 100]")
        if self.wait_duration_in_open_state_s < 0:
            raise InvalidPolicyError("wait_duration_in_open_state_s must be >= 0")
        if self.permitted_calls_in_half_open < 1:
            raise InvalidPolicyError("permitted_calls_in_half_open must be >= 1")
        if self.sliding_window_size < 1:
            raise InvalidPolicyError("sliding_window_size must be >= 1")
        if self.minimum_number_of_calls is not None and not (
            1 <= self.minimum_number_of_calls <= self.sliding_window_size
        ):
            raise InvalidPolicyError("minimum_number_of_calls must be between 1 and sliding_window_size")
        if self.limit_for_period < 1:
            raise InvalidPolicyError("limit_for_period must be >= 1")
        if self.limit_refresh_period_s <= 0:
            raise InvalidPolicyError("limit_refresh_period_s must be > 0")
        if self.rate_limiter_timeout_s < 0:
            raise InvalidPolicyError("rate_limiter_timeout_s must be >= 0")
        if self.max_retry_attempts < 1:
            raise InvalidPolicyError("max_retry_attempts must be >= 1")
        if self.retry_wait_duration_ms < 0:
            raise InvalidPolicyError("retry_wait_duration_ms must be >= 0")
        if self.max_concurrent_calls < 1:
            raise InvalidPolicyError("max_concurrent_calls must be >= 1")
        if self.bulkhead_max_wait_duration_ms < 0:
            raise InvalidPolicyError("bulkhead_max_wait_duration_ms must be >= 0")
        if self.call_timeout_s <= 0:
            raise InvalidPolicyError("call_timeout_s must be > 0")

    @property
    def effective_minimum_calls(self) -> int:
        return self.minimum_number_of_calls or self.sliding_window_size

    @property
    def retry_base_delay_s(self) -> float:
        return self.retry_wait_duration_ms / 1000.0

    @property
    def bulkhead_max_wait_s(self) -> float:
        return self.bulkhead_max_wait_duration_ms / 1000.0

    @classmethod
    def from_settings(cls, settings) -> "InvocationPolicy":
        return cls(
            failure_rate_threshold=settings.failure_rate_threshold,
            wait_duration_in_open_state_s=settings.wait_duration_in_open_state_s,
            permitted_calls_in_half_open=settings.permitted_calls_in_half_open,
            sliding_window_size=settings.sliding_window_size,
            minimum_number_of_calls=settings.minimum_number_of_calls,
            limit_for_period=settings.limit_for_period,
            limit_refresh_period_s=settings.limit_refresh_period_s,
            rate_limiter_timeout_s=settings.rate_limiter_timeout_s,
            max_retry_attempts=settings.max_retry_attempts,
            retry_wait_duration_ms=settings.retry_wait_duration_ms,
            max_concurrent_calls=settings.max_concurrent_calls,
            bulkhead_max_wait_duration_ms=settings.bulkhead_max_wait_duration_ms,
            call_timeout_s=settings.ai_call_timeout_s,
        )
