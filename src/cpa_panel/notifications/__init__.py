"""
User-facing notifications.

Success and error messages for document imports and run submissions.
"""

from .notification_service import (
    NotificationChannel,
    NotificationLevel,
    Notification,
)

__all__ = [
    "NotificationChannel",
    "NotificationLevel",
    "Notification",
]
