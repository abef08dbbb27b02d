"""
Owned timers for dispatch scopes.

Every timer is created by, and cancelled on exit of, the scope that started it.
The registry only counts what is live so tests can assert that nothing outlives
a request.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class Deadline:
    """
    Registry-tracked wrapper around asyncio.timeout_at.

    Raises TimeoutError out of the ``async with`` block when it expires.
    ``reset()`` pushes the expiry forward (idle-timer semantics).
    """

    def __init__(self, registry: TimerRegistry, when: float | None) -> None:
        self._registry = registry
        self._cm = asyncio.timeout_at(when)

    async def __aenter__(self) -> Deadline:
        await self._cm.__aenter__()
        self._registry._live.add(self)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool | None:
        self._registry._live.discard(self)
        return await self._cm.__aexit__(exc_type, exc, tb)

    def reset(self, delay_s: float) -> None:
        self._cm.reschedule(asyncio.get_running_loop().time() + delay_s)

    def expired(self) -> bool:
        return self._cm.expired()

    def cancel(self) -> None:
        """Disarm without leaving the block."""
        self._registry._live.discard(self)
        self._cm.reschedule(None)


class Ticker:
    """Recurring callback every ``interval_s`` seconds until cancelled."""

    def __init__(
        self,
        registry: TimerRegistry,
        interval_s: float,
        callback: Callable[[], Any],
        name: str = "ticker",
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._registry = registry
        self.interval_s = interval_s
        self.callback = callback
        self.name = name
        self.fired = 0
        self._task: asyncio.Task | None = None

    def start(self) -> Ticker:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=self.name)
            self._registry._live.add(self)
        return self

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            next_tick += self.interval_s
            # sleep until next_tick (avoid drift)
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            self.fired += 1
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("%s callback error: %s", self.name, e)

    def cancel(self) -> None:
        """Stop the ticker; safe to call more than once."""
        self._registry._live.discard(self)
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def active(self) -> bool:
        return self in self._registry._live

    async def __aenter__(self) -> Ticker:
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()
        task = self._task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                # Our own cancellation; propagate only if the outer task is being cancelled
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise


class Delayed:
    """One-shot deferred coroutine; tracked until it ran or was cancelled."""

    def __init__(
        self,
        registry: TimerRegistry,
        delay_s: float,
        action: Callable[[], Awaitable[Any]],
        name: str = "delayed",
    ) -> None:
        self._registry = registry
        self._task = asyncio.create_task(self._run(delay_s, action), name=name)
        self._registry._live.add(self)

    async def _run(self, delay_s: float, action: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.sleep(delay_s)
            await action()
        finally:
            self._registry._live.discard(self)

    def cancel(self) -> None:
        self._registry._live.discard(self)
        self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise


class TimerRegistry:
    """Factory and live-count for the timers of one owner (dispatcher or orchestrator)."""

    def __init__(self) -> None:
        self._live: set[Deadline | Ticker | Delayed] = set()

    @property
    def pending(self) -> int:
        return len(self._live)

    def deadline(self, delay_s: float) -> Deadline:
        return Deadline(self, asyncio.get_running_loop().time() + delay_s)

    def deadline_at(self, when: float) -> Deadline:
        return Deadline(self, when)

    def every(
        self, interval_s: float, callback: Callable[[], Any], name: str = "ticker"
    ) -> Ticker:
        return Ticker(self, interval_s, callback, name=name)

    def later(
        self, delay_s: float, action: Callable[[], Awaitable[Any]], name: str = "delayed"
    ) -> Delayed:
        return Delayed(self, delay_s, action, name=name)

    def cancel_all(self) -> None:
        for timer in list(self._live):
            timer.cancel()

    async def drain(self) -> None:
        """Wait for outstanding delayed actions to run (or be cancelled)."""
        for timer in list(self._live):
            if isinstance(timer, Delayed):
                await timer.wait()
