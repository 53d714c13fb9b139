"""
Cancellable background tasks owned by a single session.

Everything a session schedules (deferred file deletion, prefetches,
reconnect loops, radio refills) goes through one TaskScheduler so teardown
can cancel it in one call.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.Tasks'))


class TaskScheduler:
    """Tracks tasks for one owner; optional keys make a task replaceable."""

    def __init__(self, name: str):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._keyed: Dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def has(self, key: str) -> bool:
        task = self._keyed.get(key)
        return task is not None and not task.done()

    def spawn(self, coro: Awaitable, *, key: Optional[str] = None) -> Optional[asyncio.Task]:
        """Run `coro` in the background. Returns None once the scheduler is closed."""
        if self._closed:
            # Never awaited; close it so Python doesn't warn
            if hasattr(coro, "close"):
                coro.close()
            return None

        if key is not None:
            self.cancel(key)

        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        if key is not None:
            self._keyed[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(t, k))
        return task

    def call_later(self, delay: float, factory: Callable[[], Awaitable], *,
                   key: Optional[str] = None) -> Optional[asyncio.Task]:
        """Run `factory()` after `delay` seconds unless cancelled first."""
        async def runner():
            await asyncio.sleep(delay)
            await factory()

        return self.spawn(runner(), key=key)

    def cancel(self, key: str) -> bool:
        task = self._keyed.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self, *, close: bool = True) -> int:
        """Cancel every pending task. A closed scheduler refuses new work."""
        if close:
            self._closed = True
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        cancelled = 0
        for task in list(self._tasks):
            # A teardown running inside one of our own tasks must not cancel itself
            if task is current or task.done():
                continue
            task.cancel()
            cancelled += 1
        self._keyed.clear()
        if cancelled:
            logger.debug(f"{self.name}: cancelled {cancelled} pending task(s)")
        return cancelled

    def _on_done(self, task: asyncio.Task, key: Optional[str]):
        self._tasks.discard(task)
        if key is not None and self._keyed.get(key) is task:
            del self._keyed[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self.name}: background task failed: {exc!r}")
