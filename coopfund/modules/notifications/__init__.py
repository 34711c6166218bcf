# Notifications module
from coopfund.modules.notifications.models import Notification, NotificationType, NotificationStatus
from coopfund.modules.notifications.services import NotificationService, Mailer

__all__ = ["Notification", "NotificationType", "NotificationStatus", "NotificationService", "Mailer"]
