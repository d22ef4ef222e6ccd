import asyncio
import threading
from contextlib import asynccontextmanager

import structlog

from qa_orchestrator.core.exceptions import BulkheadFull
from qa_orchestrator.resilience.policy import InvocationPolicy

logger = structlog.get_logger()


class Bulkhead:
    """Caps concurrent calls to one dependency with a bounded wait for a slot"""

    def __init__(self, name: str, policy: InvocationPolicy):
        self.name = name
        self.max_concurrent_calls = policy.max_concurrent_calls
        self.max_wait_s = policy.bulkhead_max_wait_s
        self._semaphore = asyncio.Semaphore(policy.max_concurrent_calls)
        self._counter_lock = threading.Lock()
        self._in_flight = 0
        self._rejected = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available_slots(self) -> int:
        return self.max_concurrent_calls - self._in_flight

    @asynccontextmanager
    async def slot(self):
        await self._acquire()
        try:
            yield
        finally:
            with self._counter_lock:
                self._in_flight -= 1
            self._semaphore.release()

    async def _acquire(self) -> None:
        if self.max_wait_s <= 0:
            if self._semaphore.locked():
                self._reject()
            await self._semaphore.acquire()
        else:
            try:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=self.max_wait_s)
            except asyncio.TimeoutError:
                self._reject()
        with self._counter_lock:
            self._in_flight += 1

    def _reject(self) -> None:
        with self._counter_lock:
            self._rejected += 1
        logger.warning(
            "Bulkhead rejected call",
            bulkhead=self.name,
            max_concurrent_calls=self.max_concurrent_calls,
            max_wait_s=self.max_wait_s,
        )
        raise BulkheadFull(self.name, self.max_concurrent_calls)

    def metrics(self):
        return {
            "max_concurrent_calls": self.max_concurrent_calls,
            "available_concurrent_calls": self.available_slots,
            "rejected_calls": self._rejected,
        }
