import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, TypeVar, Union

import httpx

from qa_orchestrator.core.exceptions import (
    ProviderRejection,
    RateLimitedFailure,
    RecoverableIoFailure,
)

T = TypeVar("T")


class InvocationIntent(str, Enum):
    SCENARIO_GENERATION = "scenario-generation"
    EVALUATION = "evaluation"
    COVERAGE_ANALYSIS = "coverage-analysis"
    GENERIC = "generic"

    @classmethod
    def classify(cls, tag: Union["InvocationIntent", str]) -> "InvocationIntent":
        """Resolve a free-form tag to a known intent by keyword"""
        if isinstance(tag, InvocationIntent):
            return tag
        lowered = (tag or "").lower()
        if "scenario" in lowered:
            return cls.SCENARIO_GENERATION
        if "evaluat" in lowered:
            return cls.EVALUATION
        if "coverage" in lowered:
            return cls.COVERAGE_ANALYSIS
        return cls.GENERIC


class FailureKind(str, Enum):
    RECOVERABLE = "recoverable"
    NON_RETRIABLE = "non_retriable"
    THROTTLED = "throttled"


def classify_failure(exc: BaseException) -> FailureKind:
    """Decide once how retry and the breaker treat an exception.

    RECOVERABLE is retried and counted by the breaker. THROTTLED is never
    retried and never counted. NON_RETRIABLE is not retried and not counted.
    """
    if isinstance(exc, RateLimitedFailure):
        return FailureKind.THROTTLED
    if isinstance(exc, (RecoverableIoFailure, ProviderRejection)):
        return FailureKind.RECOVERABLE
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TransportError, ConnectionError)):
        return FailureKind.RECOVERABLE
    return FailureKind.NON_RETRIABLE


class DegradationCause(str, Enum):
    BULKHEAD_FULL = "BULKHEAD_FULL"
    RATE_LIMITED = "RATE_LIMITED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"
    PROVIDER_THROTTLED = "PROVIDER_THROTTLED"
    NON_RETRIABLE = "NON_RETRIABLE"

    @property
    def rejected_before_call(self) -> bool:
        return self in (
            DegradationCause.BULKHEAD_FULL,
            DegradationCause.RATE_LIMITED,
            DegradationCause.CIRCUIT_OPEN,
        )


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    REJECTED_BEFORE_CALL = "rejected_before_call"


@dataclass
class InvocationAttempt:
    """What happened during one gateway call. Never persisted."""

    intent: InvocationIntent
    dependency: str
    guards_consulted: List[str] = field(default_factory=list)
    calls_made: int = 0
    outcome: AttemptOutcome = AttemptOutcome.SUCCESS


@dataclass
class Success(Generic[T]):
    value: T
    attempt: InvocationAttempt

    degraded = False


@dataclass
class Degraded:
    fallback_value: Any
    cause: DegradationCause
    detail: str
    attempt: InvocationAttempt

    degraded = True

    @property
    def value(self):
        return self.fallback_value


Outcome = Union[Success, Degraded]
