"""
Cancellable timers keyed by an identifier (one active timer per key)
"""
import asyncio
import logging
from typing import Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TimerScheduler(Protocol):
    """Owns at most one pending timer per key"""

    def schedule(self, key: str, delay: float, callback: Callable[[], None]) -> None:
        ...

    def cancel(self, key: str) -> bool:
        ...

    def is_active(self, key: str) -> bool:
        ...

    def remaining(self, key: str) -> float:
        ...

    def cancel_all(self) -> None:
        ...


class AsyncioTimerScheduler:
    """
    TimerScheduler backed by asyncio tasks

    The key is released before the callback runs, so a callback that
    inspects or cancels its own key sees no active timer.
    """

    def __init__(self):
        self._timers: Dict[str, Tuple[asyncio.Task, float]] = {}

    def schedule(self, key: str, delay: float, callback: Callable[[], None]) -> None:
        if self.is_active(key):
            raise ValueError(f"Timer already active for {key}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay

        async def fire_after_delay():
            await asyncio.sleep(delay)
            self._timers.pop(key, None)
            try:
                callback()
            except Exception as e:
                logger.error(f"Timer callback for {key[:10]}... failed: {e}", exc_info=True)

        task = asyncio.create_task(fire_after_delay())
        self._timers[key] = (task, deadline)

    def cancel(self, key: str) -> bool:
        entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def is_active(self, key: str) -> bool:
        entry = self._timers.get(key)
        return entry is not None and not entry[0].done()

    def remaining(self, key: str) -> float:
        entry: Optional[Tuple[asyncio.Task, float]] = self._timers.get(key)
        if entry is None:
            return 0.0
        return max(0.0, entry[1] - asyncio.get_running_loop().time())

    def cancel_all(self) -> None:
        for task, _ in self._timers.values():
            task.cancel()
        self._timers.clear()
