from .messages import (
    CancellationNotification,
    Notification,
    ReactivationNotification,
    UpgradeNotification,
    WelcomeNotification,
)
from .notification_service import NotificationService

__all__ = [
    "CancellationNotification",
    "Notification",
    "NotificationService",
    "ReactivationNotification",
    "UpgradeNotification",
    "WelcomeNotification",
]
