from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime
import logging

from coopfund.core.config import settings
from coopfund.modules.members.services import MembershipService
from coopfund.modules.notifications.models import Notification, NotificationType, NotificationStatus

logger = logging.getLogger(__name__)


def _json_safe(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    return {k: (v if isinstance(v, (int, float, str, bool)) or v is None else str(v)) for k, v in data.items()}


class NotificationService:
    """
    Fire-and-forget notification sink.
    Callers invoke it after their own commit; failures are logged and never
    raised back into the loan engine.
    """

    @staticmethod
    async def notify(
        db: AsyncSession,
        user_id: Optional[int],
        notification_type: NotificationType,
        title: str,
        body: str,
        data: Dict[str, Any] = None,
        cooperative_id: int = None
    ) -> Optional[Notification]:
        """
        Store an in-app notification for one user.
        The insert runs inside a savepoint so a failure only unwinds the
        notification; the caller's already-committed objects stay loaded.
        """
        if user_id is None:
            return None
        try:
            notification = Notification(
                user_id=user_id,
                cooperative_id=cooperative_id,
                type=notification_type,
                title=title,
                body=body,
                data=_json_safe(data),
                status=NotificationStatus.DELIVERED,
                delivered_at=datetime.utcnow()
            )
            async with db.begin_nested():
                db.add(notification)
            await db.commit()
            return notification
        except Exception as e:
            logger.error(f"Failed to deliver {notification_type.value} notification to user {user_id}: {str(e)}")
            return None

    @staticmethod
    async def notify_admins(
        db: AsyncSession,
        cooperative_id: int,
        notification_type: NotificationType,
        title: str,
        body: str,
        data: Dict[str, Any] = None,
        exclude_user_ids: Iterable[int] = ()
    ) -> List[Notification]:
        """Notify every member who can approve loans"""
        excluded = set(exclude_user_ids)
        try:
            recipients = await MembershipService.get_approvers(db, cooperative_id)
        except Exception as e:
            logger.error(f"Failed to resolve notification recipients for cooperative {cooperative_id}: {str(e)}")
            return []

        notifications = []
        for member in recipients:
            if member.user_id in excluded:
                continue
            notification = await NotificationService.notify(
                db, member.user_id, notification_type, title, body, data, cooperative_id
            )
            if notification:
                notifications.append(notification)
        return notifications

    @staticmethod
    async def get_notifications(db: AsyncSession, user_id: int, unread_only: bool = False) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read_at.is_(None))
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def mark_as_read(db: AsyncSession, notification_id: int, user_id: int) -> Optional[Notification]:
        query = select(Notification).where(
            and_(Notification.id == notification_id, Notification.user_id == user_id)
        )
        result = await db.execute(query)
        notification = result.scalar_one_or_none()
        if notification and not notification.read_at:
            notification.read_at = datetime.utcnow()
            notification.status = NotificationStatus.READ
            await db.commit()
        return notification


class Mailer:
    """Best-effort email delivery via SendGrid"""

    @staticmethod
    async def send_email(recipient: Optional[str], subject: str, message: str) -> bool:
        if not recipient:
            return False
        if not settings.SENDGRID_API_KEY:
            logger.warning("SendGrid not configured, skipping email")
            return False

        try:
            mail = Mail(
                from_email=(settings.SENDGRID_FROM_EMAIL, settings.SENDGRID_FROM_NAME),
                to_emails=recipient,
                subject=subject,
                html_content=f"<p>{message}</p>"
            )
            sg = SendGridAPIClient(settings.SENDGRID_API_KEY)
            response = sg.send(mail)
            logger.info(f"Email sent to {recipient} (status {response.status_code})")
            return True
        except Exception as e:
            logger.error(f"Email send failed: {str(e)}")
            return False
