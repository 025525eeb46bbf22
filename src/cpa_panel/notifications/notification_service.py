"""
User-facing notification channel.

Success and error messages shown to the user after selection imports and
run submissions (the "toast" messages of the CPA panel).

Fire-and-forget: publishing never raises. Messages are kept in an in-memory
outbox so API handlers can return them with the response, and every message
is logged.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Callable
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass
class Notification:
    """A message for the user."""
    level: NotificationLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class NotificationChannel:
    """
    Outbox of user-facing messages.

    Optional subscribers (e.g. a websocket push) are called for every
    message; a subscriber that raises is logged and skipped.
    """

    def __init__(self, max_messages: int = 100):
        self._messages: List[Notification] = []
        self._subscribers: List[Callable[[Notification], None]] = []
        self._max_messages = max_messages

    def subscribe(self, callback: Callable[[Notification], None]) -> None:
        self._subscribers.append(callback)

    def publish(self, level: NotificationLevel, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        self._messages.append(notification)
        if len(self._messages) > self._max_messages:
            self._messages = self._messages[-self._max_messages:]

        log = logger.error if level == NotificationLevel.ERROR else logger.info
        log(f"[notify:{level.value}] {message}")

        for callback in self._subscribers:
            try:
                callback(notification)
            except Exception as e:
                logger.warning(f"Notification subscriber failed: {e}")
        return notification

    def success(self, message: str) -> Notification:
        return self.publish(NotificationLevel.SUCCESS, message)

    def error(self, message: str) -> Notification:
        return self.publish(NotificationLevel.ERROR, message)

    def info(self, message: str) -> Notification:
        return self.publish(NotificationLevel.INFO, message)

    @property
    def messages(self) -> List[Notification]:
        return list(self._messages)

    def last(self, level: Optional[NotificationLevel] = None) -> Optional[Notification]:
        """Most recent message, optionally of one level."""
        for notification in reversed(self._messages):
            if level is None or notification.level == level:
                return notification
        return None

    def drain(self) -> List[Notification]:
        """Return and clear all pending messages."""
        messages, self._messages = self._messages, []
        return messages
