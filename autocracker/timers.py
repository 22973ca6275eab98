import asyncio
from typing import Callable, Optional


class ResettableTimer:
    """
    A single loop timer handle that is cancelled and rescheduled on every
    restart, so at most one callback is ever pending.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def restart(self, delay: float, callback: Callable[[], None]) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire, callback)

    def cancel(self) -> None:
        handle = self._handle
        self._handle = None
        if handle:
            handle.cancel()

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        callback()
