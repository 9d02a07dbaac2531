from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.auth import Identity
from app.core.errors import NotFound, ValidationError
from app.models.entities import SharedGroceryList
from app.services.access import check, require_family
from app.services.notifications import NotificationType, notify
from app.services.realtime import RealtimeBroker, family_channel
from app.services.roles import Capability


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("list name is required")
    return cleaned


def _list_payload(shared_list: SharedGroceryList) -> dict:
    return {"id": shared_list.id, "family_id": shared_list.family_id, "name": shared_list.name}


def _require_list(db: Session, family_id: int, list_id: int) -> SharedGroceryList:
    shared_list = db.get(SharedGroceryList, list_id)
    if shared_list is None or shared_list.family_id != family_id:
        raise NotFound("shared list not found")
    return shared_list


def list_shared_lists(db: Session, identity: Identity, family_id: int) -> list[SharedGroceryList]:
    require_family(db, family_id)
    check(db, identity, family_id, Capability.view_lists)
    return list(
        db.execute(
            select(SharedGroceryList)
            .where(SharedGroceryList.family_id == family_id)
            .order_by(SharedGroceryList.created_at.desc(), SharedGroceryList.id.desc())
        ).scalars().all()
    )


def create_shared_list(
    db: Session, broker: RealtimeBroker, identity: Identity, family_id: int, name: str
) -> SharedGroceryList:
    require_family(db, family_id)
    check(db, identity, family_id, Capability.manage_lists)
    shared_list = SharedGroceryList(family_id=family_id, name=_clean_name(name), created_by=identity.user_id)
    db.add(shared_list)
    db.commit()
    db.refresh(shared_list)

    broker.publish(family_channel(family_id), "list.created", _list_payload(shared_list))
    notify(
        db,
        broker,
        NotificationType.list_created,
        family_id,
        identity.user_id,
        f'{identity.email} created the shared list "{shared_list.name}"',
    )
    return shared_list


def rename_shared_list(
    db: Session, broker: RealtimeBroker, identity: Identity, family_id: int, list_id: int, name: str
) -> SharedGroceryList:
    require_family(db, family_id)
    check(db, identity, family_id, Capability.manage_lists)
    shared_list = _require_list(db, family_id, list_id)
    shared_list.name = _clean_name(name)
    shared_list.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(shared_list)

    broker.publish(family_channel(family_id), "list.updated", _list_payload(shared_list))
    notify(
        db,
        broker,
        NotificationType.list_updated,
        family_id,
        identity.user_id,
        f'{identity.email} renamed a shared list to "{shared_list.name}"',
    )
    return shared_list


def delete_shared_list(db: Session, broker: RealtimeBroker, identity: Identity, family_id: int, list_id: int) -> None:
    require_family(db, family_id)
    check(db, identity, family_id, Capability.manage_lists)
    shared_list = _require_list(db, family_id, list_id)
    payload = _list_payload(shared_list)
    db.delete(shared_list)
    db.commit()

    broker.publish(family_channel(family_id), "list.deleted", payload)
    notify(
        db,
        broker,
        NotificationType.list_deleted,
        family_id,
        identity.user_id,
        f'{identity.email} deleted the shared list "{payload["name"]}"',
    )
