"""Status display surfaces for a recording session."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

logger = logging.getLogger(__name__)


def status_lines(model: str,
                 counter: int,
                 store_dir: str,
                 last_output: str = "",
                 transcribing: bool = False) -> List[str]:
    """Render the session status text for one timer tick."""
    if transcribing:
        return [
            "",
            f"Transcribing with model: {model}",
            "Processing ⚡ " + "." * (counter % 4),
            "",
            "Cancel with <esc>/<C-c>",
        ]
    lines = [
        "",
        f"Recording using model: {model}",
        "Speak 🎤 " + "📝" * (counter % 5),
        "",
        "Press <Enter> to finish recording and start transcription",
        "Cancel with <esc>/<C-c>",
        "",
        f"Recordings stored in: {store_dir}",
    ]
    if last_output:
        lines.append(last_output)
    return lines


class StatusDisplay(ABC):
    """Host surface showing session status; the session only needs these calls."""

    @abstractmethod
    def is_valid(self) -> bool:
        """Return False once the surface has been destroyed."""
        pass

    @abstractmethod
    def update(self, lines: List[str]) -> None:
        """Replace the displayed text."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Destroy the surface."""
        pass


class RichStatusDisplay(StatusDisplay):
    """Terminal panel redrawn in place with rich."""

    def __init__(self, title: str, console: Optional[Console] = None):
        self.title = title
        self.console = console or Console(stderr=True)
        self._live: Optional[Live] = None
        self._closed = False

    def open(self) -> "RichStatusDisplay":
        # Redraws happen from update() on the event loop, not a refresh thread
        self._live = Live(self._render([]), console=self.console, auto_refresh=False, transient=True)
        self._live.start()
        return self

    def _render(self, lines: List[str]) -> Panel:
        return Panel(Text("\n".join(lines)), title=self.title, border_style="red", width=72)

    def is_valid(self) -> bool:
        return self._live is not None and not self._closed

    def update(self, lines: List[str]) -> None:
        if not self.is_valid():
            return
        self._live.update(self._render(lines), refresh=True)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._live is not None:
            self._live.stop()
        logger.debug("Status display closed")
