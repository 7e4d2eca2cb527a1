"""Services layer for murmur session logic."""

from .notifier import Notifier
from .session_coordinator import SessionCoordinator
from .status_timer import StatusTimer

__all__ = [
    "Notifier",
    "SessionCoordinator",
    "StatusTimer",
]
