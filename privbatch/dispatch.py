"""
Fan-out dispatch: invoke every listener, collect failures, never propagate
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Set, Tuple

logger = logging.getLogger(__name__)


def _listener_name(listener: Callable) -> str:
    return getattr(listener, "__qualname__", None) or repr(listener)


@dataclass
class DispatchReport:
    """What happened during one dispatch"""
    delivered: int = 0
    failures: List[Tuple[str, BaseException]] = field(default_factory=list)
    tasks: List[asyncio.Future] = field(default_factory=list)  # coroutine listeners still running


class FanOutDispatcher:
    """
    Delivers an event to every subscribed listener

    Features:
    - A failing listener never prevents delivery to the others
    - Listeners may be plain callables or coroutine functions; coroutine
      listeners are scheduled as tasks so dispatch itself never suspends
    - Running listener tasks are held until done, so owners can wait for
      or cancel them on shutdown
    - Failures are logged and reported, never raised to the caller
    """

    def __init__(self, name: str = "dispatcher"):
        self.name = name
        self.listeners: List[Callable[..., Any]] = []
        self.pending: Set[asyncio.Future] = set()

    def subscribe(self, listener: Callable[..., Any]) -> Callable[[], None]:
        """Register a listener, returns a function that removes it"""
        self.listeners.append(listener)

        def unsubscribe():
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: Callable[..., Any]) -> bool:
        if listener in self.listeners:
            self.listeners.remove(listener)
            return True
        return False

    def clear(self):
        self.listeners.clear()

    def __len__(self) -> int:
        return len(self.listeners)

    def dispatch(self, *args: Any) -> DispatchReport:
        """Invoke every listener with the given arguments"""
        report = DispatchReport()

        for listener in list(self.listeners):
            name = _listener_name(listener)
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self.pending.add(task)
                    task.add_done_callback(self._task_done_callback(name))
                    report.tasks.append(task)
                report.delivered += 1
            except Exception as e:
                logger.error(f"[{self.name}] Listener {name} failed: {e}", exc_info=True)
                report.failures.append((name, e))

        return report

    async def wait_pending(self):
        """Wait for running listener tasks; their failures are already logged"""
        while self.pending:
            await asyncio.gather(*list(self.pending), return_exceptions=True)

    def cancel_pending(self) -> int:
        """Cancel running listener tasks, returns how many were cancelled"""
        tasks = [task for task in self.pending if not task.done()]
        for task in tasks:
            task.cancel()
        return len(tasks)

    def _task_done_callback(self, name: str) -> Callable[[asyncio.Future], None]:
        def on_done(task: asyncio.Future):
            self.pending.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.error(
                    f"[{self.name}] Listener {name} failed: {error}",
                    exc_info=(type(error), error, error.__traceback__)
                )

        return on_done
