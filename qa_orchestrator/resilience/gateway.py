"""Fault-tolerant invocation of a named downstream dependency.

Guards are applied outer to inner as Bulkhead -> RateLimiter ->
CircuitBreaker -> Retry. The breaker wraps the whole retry loop so one
logical call contributes at most one breaker sample. Every failure ends up
as a ``Degraded`` outcome carrying the fallback payload for the intent.
"""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from qa_orchestrator.core.exceptions import (
    BulkheadFull,
    CallNotPermitted,
    RateLimiterRejected,
    RecoverableIoFailure,
)
from qa_orchestrator.resilience.bulkhead import Bulkhead
from qa_orchestrator.resilience.circuit_breaker import CircuitBreaker, CircuitState
from qa_orchestrator.resilience.fallback import fallback_payload
from qa_orchestrator.resilience.outcome import (
    AttemptOutcome,
    DegradationCause,
    Degraded,
    FailureKind,
    InvocationAttempt,
    InvocationIntent,
    Outcome,
    Success,
    classify_failure,
)
from qa_orchestrator.resilience.policy import InvocationPolicy
from qa_orchestrator.resilience.rate_limiter import RateLimiter

logger = structlog.get_logger()

UnitOfWork = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


class _ClassifiedFailure(Exception):
    """Carries a downstream exception together with its failure kind"""

    def __init__(self, kind: FailureKind, cause: BaseException):
        self.kind = kind
        self.cause = cause
        super().__init__(str(cause))


def _is_recoverable(exc: BaseException) -> bool:
    return isinstance(exc, _ClassifiedFailure) and exc.kind == FailureKind.RECOVERABLE


class ResilientInvocationGateway:
    def __init__(
        self,
        name: str,
        policy: InvocationPolicy,
        *,
        bulkhead: Optional[Bulkhead] = None,
        rate_limiter: Optional[RateLimiter] = None,
        breaker: Optional[CircuitBreaker] = None,
        sleep: SleepFn = asyncio.sleep,
        fallback: Callable[..., Any] = fallback_payload,
    ):
        self.name = name
        self.policy = policy
        self.bulkhead = bulkhead or Bulkhead(name, policy)
        self.rate_limiter = rate_limiter or RateLimiter(name, policy, sleep=sleep)
        self.breaker = breaker or CircuitBreaker(name, policy)
        self._sleep = sleep
        self._fallback = fallback

    async def invoke(
        self,
        intent: Union[InvocationIntent, str],
        unit_of_work: UnitOfWork,
        timeout_s: Optional[float] = None,
    ) -> Outcome:
        """Run ``unit_of_work`` behind every guard and never raise for downstream errors.

        ``unit_of_work`` is a zero-argument callable returning an awaitable so
        each retry issues a fresh call.
        """
        attempt = InvocationAttempt(intent=InvocationIntent.classify(intent), dependency=self.name)
        timeout_s = timeout_s or self.policy.call_timeout_s

        try:
            attempt.guards_consulted.append("bulkhead")
            async with self.bulkhead.slot():
                attempt.guards_consulted.append("rate_limiter")
                await self.rate_limiter.acquire()
                attempt.guards_consulted.append("circuit_breaker")
                permit = self.breaker.acquire_permission()
                return await self._call_through_breaker(intent, unit_of_work, timeout_s, attempt, permit)
        except BulkheadFull as e:
            return self._degrade(intent, DegradationCause.BULKHEAD_FULL, str(e), attempt)
        except RateLimiterRejected as e:
            return self._degrade(intent, DegradationCause.RATE_LIMITED, str(e), attempt)
        except CallNotPermitted as e:
            return self._degrade(intent, DegradationCause.CIRCUIT_OPEN, str(e), attempt)

    async def _call_through_breaker(self, intent, unit_of_work, timeout_s, attempt, permit: int) -> Outcome:
        settled = False
        try:
            attempt.guards_consulted.append("retry")
            value = await self._run_with_retry(unit_of_work, timeout_s, attempt)
        except _ClassifiedFailure as failure:
            if failure.kind == FailureKind.RECOVERABLE:
                self.breaker.record_failure(permit)
                cause = DegradationCause.RETRIES_EXHAUSTED
            elif failure.kind == FailureKind.THROTTLED:
                self.breaker.release(permit)
                cause = DegradationCause.PROVIDER_THROTTLED
            else:
                self.breaker.release(permit)
                cause = DegradationCause.NON_RETRIABLE
            settled = True
            return self._degrade(
                intent, cause, f"{type(failure.cause).__name__}: {failure.cause}", attempt
            )
        else:
            self.breaker.record_success(permit)
            settled = True
            attempt.outcome = AttemptOutcome.SUCCESS
            return Success(value=value, attempt=attempt)
        finally:
            if not settled:
                # Cancelled while in flight
                self.breaker.release(permit)

    async def _run_with_retry(self, unit_of_work, timeout_s, attempt) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_retry_attempts),
            wait=wait_exponential(multiplier=self.policy.retry_base_delay_s, exp_base=2, min=0),
            retry=retry_if_exception(_is_recoverable),
            reraise=True,
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        result = None
        async for retry_attempt in retrying:
            with retry_attempt:
                result = await self._call_once(unit_of_work, timeout_s, attempt)
        return result

    async def _call_once(self, unit_of_work, timeout_s, attempt) -> Any:
        attempt.calls_made += 1
        try:
            return await asyncio.wait_for(unit_of_work(), timeout=timeout_s)
        except asyncio.TimeoutError:
            failure = RecoverableIoFailure(f"Call to '{self.name}' timed out after {timeout_s}s")
            raise _ClassifiedFailure(FailureKind.RECOVERABLE, failure) from None
        except Exception as exc:
            raise _ClassifiedFailure(classify_failure(exc), exc) from exc

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "Retrying downstream call",
            dependency=self.name,
            attempt=retry_state.attempt_number,
            wait_s=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc) if exc else None,
        )

    def _degrade(self, intent, cause: DegradationCause, detail: str, attempt: InvocationAttempt) -> Degraded:
        attempt.outcome = (
            AttemptOutcome.REJECTED_BEFORE_CALL if cause.rejected_before_call else AttemptOutcome.FALLBACK
        )
        logger.warning(
            "Downstream call degraded to fallback",
            dependency=self.name,
            intent=attempt.intent.value,
            cause=cause.value,
            calls_made=attempt.calls_made,
            detail=detail,
        )
        return Degraded(
            fallback_value=self._fallback(intent, cause),
            cause=cause,
            detail=detail,
            attempt=attempt,
        )

    def metrics(self) -> Dict[str, Any]:
        breaker = self.breaker.metrics()
        return {
            "dependency": self.name,
            "circuit_breaker": breaker,
            "rate_limiter": self.rate_limiter.metrics(),
            "bulkhead": self.bulkhead.metrics(),
            "healthy": breaker["state"] != CircuitState.OPEN.value,
        }


class ResilienceRegistry:
    """Process-wide guard state, one gateway per dependency name.

    Built once at startup and injected where needed. Tests build their own.
    """

    def __init__(
        self,
        default_policy: InvocationPolicy,
        *,
        policies: Optional[Dict[str, InvocationPolicy]] = None,
        sleep: SleepFn = asyncio.sleep,
        now_monotonic: Callable[[], float] = time.monotonic,
    ):
        self.default_policy = default_policy
        self._policies = dict(policies or {})
        self._sleep = sleep
        self._now = now_monotonic
        self._gateways: Dict[str, ResilientInvocationGateway] = {}
        self._lock = threading.Lock()

    def policy_for(self, name: str) -> InvocationPolicy:
        return self._policies.get(name, self.default_policy)

    def gateway(self, name: str) -> ResilientInvocationGateway:
        with self._lock:
            gateway = self._gateways.get(name)
            if gateway is None:
                gateway = self._build(name)
                self._gateways[name] = gateway
            return gateway

    def reset(self, name: str) -> bool:
        """Administrative reset of one dependency's guard state"""
        with self._lock:
            if name not in self._gateways:
                return False
            self._gateways[name] = self._build(name)
        logger.info("Resilience state reset", dependency=name)
        return True

    def metrics(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            gateways = list(self._gateways.values())
        return {gateway.name: gateway.metrics() for gateway in gateways}

    def _build(self, name: str) -> ResilientInvocationGateway:
        policy = self.policy_for(name)
        return ResilientInvocationGateway(
            name,
            policy,
            bulkhead=Bulkhead(name, policy),
            rate_limiter=RateLimiter(name, policy, sleep=self._sleep),
            breaker=CircuitBreaker(name, policy, now_monotonic=self._now),
            sleep=self._sleep,
        )
