from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from .utils import log


TickFn = Callable[[], Awaitable[None]]


class PeriodicTask:
    """
    One recurring timer on the event loop.

    Ticks never overlap: the next sleep starts only after the previous tick
    (including its awaits) has finished. A failing tick is logged and the
    timer keeps going. start() while running is a no-op; stop() cancels.
    """

    def __init__(self, name: str, interval_ms: float, fn: TickFn, tag: str = "TIMER"):
        self.name = name
        self.interval_ms = float(interval_ms)
        self._fn = fn
        self._tag = tag
        self._task: Optional[asyncio.Task] = None
        self._stopped = True
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.running or self._closed:
            return False
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return True

    def stop(self) -> None:
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def close(self) -> None:
        """Stop for good: later start() calls are ignored."""
        self._closed = True
        self.stop()

    def restart(self, interval_ms: Optional[float] = None) -> None:
        if interval_ms is not None:
            self.interval_ms = float(interval_ms)
        was_running = self.running
        self.stop()
        if was_running:
            self.start()

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval_ms / 1000.0)
            if self._stopped:
                break
            try:
                await self._fn()
            except Exception as e:
                log(f"[{self._tag}] {self.name} tick failed: {e!r}")


class OneShot:
    """Delayed callback that can be cancelled before it fires."""

    def __init__(self, name: str, delay_ms: float, fn: TickFn, tag: str = "TIMER"):
        self.name = name
        self.delay_ms = float(delay_ms)
        self._fn = fn
        self._tag = tag
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.pending or self._closed:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def close(self) -> None:
        self._closed = True
        self.cancel()

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_ms / 1000.0)
        try:
            await self._fn()
        except Exception as e:
            log(f"[{self._tag}] {self.name} failed: {e!r}")
