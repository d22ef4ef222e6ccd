import asyncio
from contextlib import asynccontextmanager
from typing import Set
from weakref import WeakValueDictionary

from qa_orchestrator.core.exceptions import PackageBusy


class PackageLockRegistry:
    """Per-package-id execution locks and pending cancellation flags.

    Lives for the process so every orchestrator instance shares it.
    """

    def __init__(self):
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()
        self._cancel_requested: Set[str] = set()

    def _lock_for(self, package_id: str) -> asyncio.Lock:
        lock = self._locks.get(package_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[package_id] = lock
        return lock

    def is_busy(self, package_id: str) -> bool:
        lock = self._locks.get(package_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, package_id: str, wait: bool = False):
        """Hold the stage lock for ``package_id``.

        Raises ``PackageBusy`` right away when another stage holds it and
        ``wait`` is false.
        """
        lock = self._lock_for(package_id)
        if lock.locked() and not wait:
            raise PackageBusy(package_id)
        async with lock:
            yield lock

    def request_cancel(self, package_id: str) -> None:
        self._cancel_requested.add(package_id)

    def cancel_requested(self, package_id: str) -> bool:
        return package_id in self._cancel_requested

    def clear_cancel(self, package_id: str) -> None:
        self._cancel_requested.discard(package_id)
