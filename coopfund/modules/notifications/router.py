from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coopfund.core.database import get_db
from coopfund.core.dependencies import get_current_user_id
from coopfund.modules.notifications import schemas
from coopfund.modules.notifications.services import NotificationService

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("", response_model=schemas.NotificationListResponse)
async def get_notifications(
    unread_only: bool = Query(False, description="Only show unread"),
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """Loan notifications addressed to the current user, newest first"""
    notifications = await NotificationService.get_notifications(db, user_id, unread_only)
    unread_count = sum(1 for n in notifications if n.read_at is None)
    return schemas.NotificationListResponse(
        notifications=[schemas.NotificationResponse.model_validate(n) for n in notifications],
        unread_count=unread_count
    )


@router.patch("/{notification_id}/read", response_model=schemas.NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    notification = await NotificationService.mark_as_read(db, notification_id, user_id)
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return notification
