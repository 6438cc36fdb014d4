"""Owned, replaceable debounce timers on the running event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Runs a coroutine after a quiet period; re-arming cancels the last one.

    Only the waiting phase can be cancelled. Once the delay has elapsed the
    action runs to completion even if the timer is re-armed meanwhile.
    Instances are independent, so cancelling one never touches another.
    """

    def __init__(self, delay: float, name: str = "debounce") -> None:
        self.delay = delay
        self._name = name
        self._timer: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """Whether a timer is armed and has not fired yet."""
        return self._timer is not None and not self._timer.done()

    def arm(self, action: Callable[[], Awaitable[None]]) -> None:
        """Cancel any pending timer, then schedule ``action`` after the delay."""
        self.cancel()
        task = asyncio.get_running_loop().create_task(self._run(action), name=self._name)
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> bool:
        """Cancel the pending timer. Returns True if one was pending."""
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            return True
        return False

    async def wait(self) -> None:
        """Wait until no timer is pending and no fired action is running."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def _run(self, action: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(self.delay)
        if self._timer is asyncio.current_task():
            self._timer = None
        try:
            await action()
        except Exception:
            logger.exception("Debounced action %s failed", self._name)
