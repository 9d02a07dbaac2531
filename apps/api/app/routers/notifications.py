from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.auth import Identity, get_identity
from app.core.clock import Clock, get_clock
from app.core.db import get_db
from app.schemas.notifications import (
    NotificationChangeResponse,
    NotificationListResponse,
    NotificationMarkRead,
    NotificationResponse,
)
from app.services import notifications as fanout

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


def _to_notification_response(entry: fanout.NotificationEntry) -> NotificationResponse:
    response = NotificationResponse.model_validate(entry.notification, from_attributes=True)
    return response.model_copy(update={"family_name": entry.family_name, "sender_name": entry.sender_name})


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    entries = fanout.list_notifications(db, identity, unread_only=unread_only)
    return NotificationListResponse(items=[_to_notification_response(entry) for entry in entries])


@router.put("/read", response_model=NotificationChangeResponse)
def mark_notifications_read(
    payload: NotificationMarkRead,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    clock: Clock = Depends(get_clock),
):
    affected = fanout.mark_read(db, identity, payload.notification_ids, now=clock.now())
    return NotificationChangeResponse(affected=affected)


@router.delete("/{notification_id}", response_model=NotificationChangeResponse)
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    affected = fanout.delete_notification(db, identity, notification_id)
    return NotificationChangeResponse(affected=affected)
