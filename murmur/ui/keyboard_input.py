"""Terminal key input delivered to the asyncio loop."""

import asyncio
import sys
import threading
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)

CONFIRM_KEYS = ("\r", "\n")
CANCEL_KEYS = ("\x1b", "\x03", "q")


class KeyboardInputHandler:
    """Reads single keys on a helper thread and hands them to the loop.

    The callback always runs on the loop thread via call_soon_threadsafe.
    """

    def __init__(self, callback: Callable[[str], None], loop: asyncio.AbstractEventLoop):
        """Initialize keyboard handler.

        Args:
            callback: Called on the loop with each key, lowercased
            loop: Loop the callback is scheduled on
        """
        self.callback = callback
        self.loop = loop
        self.running = False
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the keyboard input handler."""
        if self.running:
            return

        self.running = True
        self.thread = threading.Thread(target=self._input_loop, daemon=True)
        self.thread.start()
        logger.info("Keyboard input handler started")

    def stop(self) -> None:
        """Stop the keyboard input handler."""
        self.running = False
        if self.thread:
            self.thread.join(timeout=1.0)
        logger.info("Keyboard input handler stopped")

    def _input_loop(self) -> None:
        while self.running:
            key = self._get_key()
            if not key:
                continue
            logger.debug(f"Key detected: {key!r}")
            if self.loop.is_closed():
                break
            self.loop.call_soon_threadsafe(self.callback, key)

    def _get_key(self) -> Optional[str]:
        if sys.platform == "win32":
            return self._get_key_windows()
        return self._get_key_unix()

    def _get_key_windows(self) -> Optional[str]:
        import msvcrt
        import time

        if msvcrt.kbhit():
            return msvcrt.getwch().lower()
        time.sleep(0.05)
        return None

    def _get_key_unix(self) -> Optional[str]:
        import select
        import termios
        import tty

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            # cbreak keeps output processing and SIGINT, unlike raw mode
            tty.setcbreak(fd)
            if select.select([sys.stdin], [], [], 0.1)[0]:
                return sys.stdin.read(1).lower()
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        return None
