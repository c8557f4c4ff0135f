from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Schedules callbacks on the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(max(delay, 0.0), callback)


class ResponseTimer:
    """One deadline and one pending timeout that can be frozen and resumed.

    While paused the remaining time is stored, not consumed: ``resume`` schedules
    the expiry exactly ``remaining`` seconds later.
    """

    def __init__(self, scheduler: Scheduler, on_expire: Callable[[], None]):
        self._scheduler = scheduler
        self._on_expire = on_expire
        self._handle: Optional[TimerHandle] = None
        self._deadline: Optional[float] = None
        self._frozen: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def paused(self) -> bool:
        return self._frozen is not None

    def remaining(self) -> float:
        if self._frozen is not None:
            return self._frozen
        if self._deadline is None:
            return 0.0
        return max(self._deadline - self._scheduler.now(), 0.0)

    def start(self, duration: float) -> None:
        self.cancel()
        self._arm(duration)

    def pause(self) -> float:
        if self._handle is None:
            return self.remaining()
        self._frozen = self.remaining()
        self._disarm()
        return self._frozen

    def resume(self) -> None:
        if self._frozen is None:
            return
        remaining, self._frozen = self._frozen, None
        self._arm(remaining)

    def cancel(self) -> None:
        self._disarm()
        self._frozen = None

    def _arm(self, duration: float) -> None:
        self._deadline = self._scheduler.now() + duration
        self._handle = self._scheduler.call_later(duration, self._fire)

    def _disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._deadline = None

    def _fire(self) -> None:
        self._handle = None
        self._deadline = None
        self._on_expire()
