from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict, Any

from coopfund.modules.notifications.models import NotificationType, NotificationStatus


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    cooperative_id: Optional[int] = None
    type: NotificationType
    title: str
    body: str
    data: Optional[Dict[str, Any]] = None
    status: NotificationStatus
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int
