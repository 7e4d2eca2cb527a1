"""User-visible notice channel built on pubsub.pub."""

import logging
from typing import Any, Optional

from pubsub import pub

from ..errors import MurmurError
from ..models.events import Notice

logger = logging.getLogger(__name__)

NOTICE_TOPIC = "murmur.notice"
STATE_TOPIC = "murmur.state"

_LOG_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Notifier:
    """Publishes notices and session state changes for whatever host is listening."""

    def __init__(self, notice_topic: str = NOTICE_TOPIC, state_topic: str = STATE_TOPIC):
        """Initialize notifier.

        Args:
            notice_topic: Pub/sub topic for user-visible notices
            state_topic: Pub/sub topic for session state transitions
        """
        self.notice_topic = notice_topic
        self.state_topic = state_topic

    def notify(self, message: str, level: str = "info", code: str = "") -> Notice:
        """Log a notice and publish it to subscribers."""
        notice = Notice(level=level, message=message, code=code)
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        pub.sendMessage(self.notice_topic, notice=notice)
        return notice

    def error(self, error: Exception) -> Notice:
        """Report a session failure."""
        code = error.code if isinstance(error, MurmurError) else type(error).__name__
        return self.notify(str(error), level="error", code=code)

    def state_changed(self, session_id: str, old: Any, new: Any) -> None:
        logger.debug(f"Session {session_id}: {old.value} -> {new.value}")
        pub.sendMessage(self.state_topic, session_id=session_id, old=old, new=new)

    def subscribe(self, listener, topic: Optional[str] = None) -> None:
        """Subscribe a listener; pubsub only keeps a weak reference to it."""
        pub.subscribe(listener, topic or self.notice_topic)

    def unsubscribe(self, listener, topic: Optional[str] = None) -> None:
        pub.unsubscribe(listener, topic or self.notice_topic)
