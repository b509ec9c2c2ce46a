"""Debouncer: run an async action once a quiet period has elapsed since the last trigger."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from hexanotes.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Debouncer:
    """Coalesce bursts of :meth:`schedule` calls into one run of *action*.

    Each call to :meth:`schedule` cancels the pending timer and starts a new
    one.  Once the timer has elapsed the action is no longer cancellable; a
    later :meth:`schedule` starts a fresh timer alongside it.

    *sleep* defaults to :func:`asyncio.sleep`; tests inject a fake clock.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[object]], *, sleep: Sleep | None = None) -> None:
        self.delay = delay
        self._action = action
        self._sleep = sleep or asyncio.sleep
        self._timer: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def schedule(self) -> None:
        """(Re-)start the delay timer.  Must be called from a running event loop."""
        self.cancel_pending()
        self._timer = asyncio.get_running_loop().create_task(self._run())

    def cancel_pending(self) -> bool:
        """Cancel the timer if it has not fired yet; return whether one was cancelled."""
        if self._timer is None or self._timer.done():
            self._timer = None
            return False
        self._timer.cancel()
        self._timer = None
        return True

    async def _run(self) -> None:
        await self._sleep(self.delay)
        task = asyncio.current_task()
        if self._timer is task:
            self._timer = None
        if task is not None:
            self._running.add(task)
        try:
            await self._action()
        finally:
            self._running.discard(task)

    async def wait(self) -> None:
        """Wait until the pending timer (if any) and any running action finish."""
        tasks = [t for t in (self._timer, *self._running) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
