"""Repeating status timer driven by the asyncio loop."""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StatusTimer:
    """Calls callback(counter) right away and then every interval seconds."""

    def __init__(self, interval: float, callback: Callable[[int], None]):
        self.interval = interval
        self.callback = callback
        self.counter = 0
        self.running = False
        self.closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handle: Optional[asyncio.Handle] = None

    def start(self) -> None:
        if self.closed:
            raise RuntimeError("StatusTimer is closed")
        if self.running:
            return
        self.running = True
        self._loop = asyncio.get_running_loop()
        self._handle = self._loop.call_soon(self._tick)

    def _tick(self) -> None:
        self._handle = None
        if not self.running:
            return
        self.callback(self.counter)
        self.counter += 1
        # The callback may have stopped the timer
        if self.running:
            self._handle = self._loop.call_later(self.interval, self._tick)

    def stop(self) -> None:
        self.running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def close(self) -> None:
        if self.closed:
            return
        self.stop()
        self.closed = True
        logger.debug("Status timer closed")
