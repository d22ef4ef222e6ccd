import asyncio
import math
from typing import Awaitable, Callable

import structlog
from pyrate_limiter import Limiter, Rate

from qa_orchestrator.core.exceptions import RateLimiterRejected
from qa_orchestrator.resilience.policy import InvocationPolicy

logger = structlog.get_logger()

# Poll interval while waiting for the bucket to refill
_POLL_INTERVAL_S = 0.05


class RateLimiter:
    """Token bucket of ``limit_for_period`` permits per refresh period.

    ``pyrate_limiter`` is used in non-blocking mode. Waiting for a permit is
    done here with awaitable sleeps so no event loop thread is ever blocked.
    """

    def __init__(
        self,
        name: str,
        policy: InvocationPolicy,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.limit_for_period = policy.limit_for_period
        self.refresh_period_s = policy.limit_refresh_period_s
        self.timeout_s = policy.rate_limiter_timeout_s
        self._sleep = sleep
        interval_ms = max(1, int(policy.limit_refresh_period_s * 1000))
        self._limiter = Limiter(
            [Rate(policy.limit_for_period, interval_ms)],
            raise_when_fail=False,
            max_delay=None,
        )
        self._granted = 0
        self._rejected = 0

    def try_acquire(self) -> bool:
        return bool(self._limiter.try_acquire(self.name, weight=1))

    async def acquire(self) -> None:
        """Wait up to the configured timeout for a permit"""
        polls = math.ceil(self.timeout_s / _POLL_INTERVAL_S)
        for poll in range(polls + 1):
            if self.try_acquire():
                self._granted += 1
                return
            if poll < polls:
                await self._sleep(_POLL_INTERVAL_S)

        self._rejected += 1
        logger.warning(
            "Rate limiter rejected call",
            limiter=self.name,
            limit_for_period=self.limit_for_period,
            refresh_period_s=self.refresh_period_s,
            timeout_s=self.timeout_s,
        )
        raise RateLimiterRejected(self.name, self.timeout_s)

    def metrics(self):
        return {
            "limit_for_period": self.limit_for_period,
            "granted_permits": self._granted,
            "rejected_permits": self._rejected,
        }
