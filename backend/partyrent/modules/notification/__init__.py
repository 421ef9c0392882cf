"""In-app notifications."""

from partyrent.modules.notification.models import Notification, NotificationType
from partyrent.modules.notification.service import NotificationService

__all__ = ["Notification", "NotificationType", "NotificationService"]
