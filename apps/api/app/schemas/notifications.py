from datetime import datetime

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: int
    user_id: str
    family_id: int
    sender_id: str | None
    type: str
    message: str
    read: bool
    read_at: datetime | None = None
    created_at: datetime
    family_name: str | None = None
    sender_name: str = "System"


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]


class NotificationMarkRead(BaseModel):
    notification_ids: list[int]


class NotificationChangeResponse(BaseModel):
    affected: int
