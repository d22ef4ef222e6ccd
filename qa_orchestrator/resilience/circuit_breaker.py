"""Count-based circuit breaker.

Outcomes of finished calls go into a fixed-size window. Once the window
holds at least ``minimum_number_of_calls`` outcomes and the failure rate
reaches the threshold, the breaker opens. After the cool-down it lets a
bounded number of probes through and decides from their outcomes whether to
close or re-open.

``acquire_permission`` returns the generation the permit belongs to. Every
state change starts a new generation, and outcomes reported with an older
one are dropped, so a call admitted before the breaker opened never counts
as a half-open probe. Callers hand back the permit with ``release`` for
outcomes that must not influence the breaker (throttling, non-retriable
errors, cancellation).
"""

import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

import structlog

from qa_orchestrator.core.exceptions import CallNotPermitted
from qa_orchestrator.resilience.policy import InvocationPolicy

logger = structlog.get_logger()


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        policy: InvocationPolicy,
        *,
        now_monotonic: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.policy = policy
        self._now = now_monotonic
        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._generation = 0
        self._window: Deque[bool] = deque(maxlen=policy.sliding_window_size)  # True == failure
        self._opened_at: Optional[float] = None
        self._probes_in_flight = 0
        self._probe_results: List[bool] = []
        self._not_permitted_calls = 0
        self._stale_outcomes = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failure_rate(self) -> float:
        """Failure percentage over the current window, -1 until enough calls"""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                return self._rate(self._probe_results, self.policy.permitted_calls_in_half_open)
            return self._rate(list(self._window), self.policy.effective_minimum_calls)

    def acquire_permission(self) -> int:
        """Take a permit or raise ``CallNotPermitted``.

        Returns the permit's generation, to be passed back with the outcome.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return self._generation
            if self._state == CircuitState.HALF_OPEN:
                if self._probes_in_flight + len(self._probe_results) < self.policy.permitted_calls_in_half_open:
                    self._probes_in_flight += 1
                    return self._generation
            self._not_permitted_calls += 1
            raise CallNotPermitted(self.name, self._state.value)

    def record_success(self, generation: int) -> None:
        self._record(generation, failed=False)

    def record_failure(self, generation: int) -> None:
        self._record(generation, failed=True)

    def release(self, generation: int) -> None:
        """Give back a permit without recording an outcome"""
        with self._lock:
            if (
                generation == self._generation
                and self._state == CircuitState.HALF_OPEN
                and self._probes_in_flight > 0
            ):
                self._probes_in_flight -= 1

    def reset(self) -> None:
        with self._lock:
            self._window.clear()
            self._probe_results.clear()
            self._probes_in_flight = 0
            self._opened_at = None
            self._not_permitted_calls = 0
            # Calls admitted before the reset must not land in the fresh window
            self._generation += 1
            self._set_state(CircuitState.CLOSED, reason="reset")

    def metrics(self) -> Dict[str, object]:
        with self._lock:
            self._maybe_half_open()
            return {
                "state": self._state.value,
                "failure_rate": self.failure_rate,
                "buffered_calls": len(self._window),
                "failed_calls": sum(1 for failed in self._window if failed),
                "not_permitted_calls": self._not_permitted_calls,
                "stale_outcomes": self._stale_outcomes,
            }

    def _record(self, generation: int, failed: bool) -> None:
        with self._lock:
            self._maybe_half_open()
            if generation != self._generation:
                # Admitted under an earlier state
                self._stale_outcomes += 1
                logger.info(
                    "Circuit breaker ignored stale outcome",
                    breaker=self.name,
                    state=self._state.value,
                    failed=failed,
                )
                return

            if self._state == CircuitState.HALF_OPEN:
                if self._probes_in_flight > 0:
                    self._probes_in_flight -= 1
                self._probe_results.append(failed)
                if len(self._probe_results) >= self.policy.permitted_calls_in_half_open:
                    rate = self._rate(self._probe_results, self.policy.permitted_calls_in_half_open)
                    if rate >= self.policy.failure_rate_threshold:
                        self._open(rate)
                    else:
                        self._window.clear()
                        self._probe_results.clear()
                        self._set_state(CircuitState.CLOSED, reason="probes succeeded", failure_rate=rate)
                return

            self._window.append(failed)
            if failed:
                logger.warning(
                    "Circuit breaker recorded failure",
                    breaker=self.name,
                    failed_calls=sum(1 for f in self._window if f),
                    buffered_calls=len(self._window),
                )
            rate = self._rate(list(self._window), self.policy.effective_minimum_calls)
            if rate >= self.policy.failure_rate_threshold:
                self._open(rate)

    def _open(self, rate: float) -> None:
        self._opened_at = self._now()
        self._probe_results.clear()
        self._probes_in_flight = 0
        self._set_state(CircuitState.OPEN, reason="failure rate threshold reached", failure_rate=rate)

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._now() - self._opened_at >= self.policy.wait_duration_in_open_state_s:
            self._probe_results.clear()
            self._probes_in_flight = 0
            self._set_state(CircuitState.HALF_OPEN, reason="cool-down elapsed")

    def _set_state(self, new_state: CircuitState, **context) -> None:
        if new_state == self._state:
            return
        logger.info(
            "Circuit breaker state changed",
            breaker=self.name,
            from_state=self._state.value,
            to_state=new_state.value,
            **context,
        )
        self._state = new_state
        self._generation += 1

    @staticmethod
    def _rate(outcomes: List[bool], minimum: int) -> float:
        if len(outcomes) < minimum or not outcomes:
            return -1.0
        return 100.0 * sum(1 for failed in outcomes if failed) / len(outcomes)
