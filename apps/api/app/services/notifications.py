from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from app.core.auth import Identity
from app.models.entities import FamilyGroup, FamilyMember, Notification
from app.services.realtime import RealtimeBroker, user_notifications_channel

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    invitation = "invitation"
    invitation_declined = "invitation_declined"
    member_joined = "member_joined"
    member_left = "member_left"
    member_removed = "member_removed"
    role_updated = "role_updated"
    family_updated = "family_updated"
    list_created = "list_created"
    list_updated = "list_updated"
    list_deleted = "list_deleted"


def notification_payload(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "family_id": notification.family_id,
        "sender_id": notification.sender_id,
        "type": notification.type,
        "message": notification.message,
        "read": notification.read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def resolve_recipients(db: Session, family_id: int, sender_id: str | None) -> list[str]:
    user_ids = db.execute(
        select(FamilyMember.user_id).where(FamilyMember.family_id == family_id).order_by(FamilyMember.id.asc())
    ).scalars().all()
    return [user_id for user_id in user_ids if user_id != sender_id]


def notify(
    db: Session,
    broker: RealtimeBroker,
    event: NotificationType,
    family_id: int,
    sender_id: str | None,
    message: str,
    *,
    recipients: Iterable[str] | None = None,
) -> list[Notification]:
    """
    Write one notification per recipient and publish each on the recipient's channel.

    Recipients default to every member of the family except the sender. This runs after
    the triggering change has committed; failures are logged and yield an empty list so
    the caller's change is never undone by a lost notification.
    """
    try:
        user_ids = list(recipients) if recipients is not None else resolve_recipients(db, family_id, sender_id)
        rows = [
            Notification(
                user_id=user_id,
                family_id=family_id,
                sender_id=sender_id,
                type=event.value,
                message=message,
            )
            for user_id in dict.fromkeys(user_ids)
        ]
        if not rows:
            return []
        db.add_all(rows)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("notification fanout failed event=%s family_id=%s", event.value, family_id)
        return []

    for row in rows:
        broker.publish(user_notifications_channel(row.user_id), "notification.created", notification_payload(row))
    logger.info("notification fanout event=%s family_id=%s recipients=%d", event.value, family_id, len(rows))
    return rows


@dataclass(frozen=True)
class NotificationEntry:
    notification: Notification
    family_name: str | None
    sender_name: str


def sender_label(sender_id: str | None, sender_email: str | None) -> str:
    if sender_id is None:
        return "System"
    return sender_email or "Unknown User"


def list_notifications(db: Session, identity: Identity, *, unread_only: bool = False) -> list[NotificationEntry]:
    # The sender is named by their membership in the notifying family, if they still have one.
    sender = aliased(FamilyMember)
    query = (
        select(Notification, FamilyGroup.name, sender.email)
        .outerjoin(FamilyGroup, FamilyGroup.id == Notification.family_id)
        .outerjoin(
            sender,
            and_(sender.family_id == Notification.family_id, sender.user_id == Notification.sender_id),
        )
        .where(Notification.user_id == identity.user_id)
    )
    if unread_only:
        query = query.where(Notification.read.is_(False))
    rows = db.execute(query.order_by(Notification.created_at.desc(), Notification.id.desc())).all()
    return [
        NotificationEntry(
            notification=notification,
            family_name=family_name,
            sender_name=sender_label(notification.sender_id, sender_email),
        )
        for notification, family_name, sender_email in rows
    ]


def mark_read(db: Session, identity: Identity, notification_ids: list[int], *, now: datetime) -> int:
    if not notification_ids:
        return 0
    # Ids owned by other users simply match nothing.
    result = db.execute(
        update(Notification)
        .where(Notification.id.in_(notification_ids), Notification.user_id == identity.user_id)
        .values(read=True, read_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


def delete_notification(db: Session, identity: Identity, notification_id: int) -> int:
    result = db.execute(
        delete(Notification)
        .where(Notification.id == notification_id, Notification.user_id == identity.user_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount
