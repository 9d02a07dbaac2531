from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import Identity
from app.core.errors import Conflict, LastAdminError, NotFound, ValidationError
from app.models.entities import FamilyGroup, FamilyMember, RoleEnum
from app.services.access import check, require_family, require_member
from app.services.notifications import NotificationType, notify
from app.services.purge import purge_family
from app.services.realtime import RealtimeBroker, family_channel
from app.services.roles import Capability, parse_role

logger = logging.getLogger(__name__)


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("name is required")
    return cleaned


def member_payload(member: FamilyMember) -> dict:
    return {
        "family_id": member.family_id,
        "user_id": member.user_id,
        "email": member.email,
        "role": member.role.value,
    }


def create_group(db: Session, identity: Identity, name: str) -> FamilyGroup:
    family = FamilyGroup(name=_clean_name(name), created_by=identity.user_id)
    try:
        db.add(family)
        db.flush()
        # Creator becomes the initial admin member.
        db.add(
            FamilyMember(
                family_id=family.id,
                user_id=identity.user_id,
                email=identity.email,
                role=RoleEnum.admin,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(family)
    logger.info("family group created family_id=%s by=%s", family.id, identity.user_id)
    return family


def list_groups_for(db: Session, identity: Identity) -> list[FamilyGroup]:
    query = (
        select(FamilyGroup)
        .join(FamilyMember, FamilyMember.family_id == FamilyGroup.id)
        .where(FamilyMember.user_id == identity.user_id)
        .order_by(FamilyGroup.id.asc())
    )
    return list(db.execute(query).scalars().all())


def get_group(db: Session, identity: Identity, family_id: int) -> FamilyGroup:
    family = require_family(db, family_id)
    require_member(db, identity, family_id)
    return family


def update_group(db: Session, broker: RealtimeBroker, identity: Identity, family_id: int, name: str) -> FamilyGroup:
    family = require_family(db, family_id)
    check(db, identity, family_id, Capability.manage_family)
    family.name = _clean_name(name)
    family.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(family)

    broker.publish(family_channel(family_id), "family.updated", {"family_id": family_id, "name": family.name})
    notify(
        db,
        broker,
        NotificationType.family_updated,
        family_id,
        identity.user_id,
        f'{identity.email} renamed the family group to "{family.name}"',
    )
    return family


def delete_group(db: Session, broker: RealtimeBroker, identity: Identity, family_id: int) -> None:
    require_family(db, family_id)
    check(db, identity, family_id, Capability.manage_family)
    try:
        purge_family(db, family_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("family group deleted family_id=%s by=%s", family_id, identity.user_id)
    broker.publish(family_channel(family_id), "family.deleted", {"family_id": family_id})


def list_members(db: Session, identity: Identity, family_id: int) -> list[FamilyMember]:
    require_family(db, family_id)
    require_member(db, identity, family_id)
    return list(
        db.execute(
            select(FamilyMember).where(FamilyMember.family_id == family_id).order_by(FamilyMember.id.asc())
        ).scalars().all()
    )


def _lock_admins(db: Session, family_id: int) -> list[int]:
    return list(
        db.execute(
            select(FamilyMember.id)
            .where(FamilyMember.family_id == family_id, FamilyMember.role == RoleEnum.admin)
            .order_by(FamilyMember.id.asc())
            .with_for_update()
        ).scalars().all()
    )


def _lock_target(db: Session, family_id: int, user_id: str) -> FamilyMember:
    member = db.execute(
        select(FamilyMember)
        .where(FamilyMember.family_id == family_id, FamilyMember.user_id == user_id)
        .with_for_update()
    ).scalar_one_or_none()
    if member is None:
        raise NotFound("family member not found")
    return member


def update_member_role(
    db: Session,
    broker: RealtimeBroker,
    identity: Identity,
    family_id: int,
    target_user_id: str,
    role: str | RoleEnum,
) -> FamilyMember:
    new_role = parse_role(role)
    require_family(db, family_id)
    check(db, identity, family_id, Capability.manage_members)

    try:
        admin_ids = _lock_admins(db, family_id)
        target = _lock_target(db, family_id, target_user_id)
        current_role = target.role
        if current_role == RoleEnum.admin and new_role != RoleEnum.admin and len(admin_ids) <= 1:
            raise LastAdminError("cannot demote the last admin of a family group")

        result = db.execute(
            update(FamilyMember)
            .where(FamilyMember.id == target.id, FamilyMember.role == current_role)
            .values(role=new_role, updated_at=datetime.now(timezone.utc), updated_by=identity.user_id)
        )
        if result.rowcount != 1:
            raise Conflict("member role changed concurrently; retry")
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(target)

    broker.publish(family_channel(family_id), "member.role_updated", member_payload(target))
    if current_role != new_role:
        notify(
            db,
            broker,
            NotificationType.role_updated,
            family_id,
            identity.user_id,
            f"{target.email or target.user_id} is now {new_role.value}",
        )
    return target


def remove_member(db: Session, broker: RealtimeBroker, identity: Identity, family_id: int, target_user_id: str) -> None:
    require_family(db, family_id)
    leaving = target_user_id == identity.user_id
    if leaving:
        # A member may always leave; the last-admin guard still applies below.
        require_member(db, identity, family_id)
    else:
        check(db, identity, family_id, Capability.manage_members)

    try:
        admin_ids = _lock_admins(db, family_id)
        target = _lock_target(db, family_id, target_user_id)
        if target.role == RoleEnum.admin and len(admin_ids) <= 1:
            raise LastAdminError("cannot remove the last admin of a family group")
        payload = member_payload(target)
        db.execute(delete(FamilyMember).where(FamilyMember.id == target.id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    label = payload["email"] or payload["user_id"]
    broker.publish(family_channel(family_id), "member.removed", payload)
    if leaving:
        notify(db, broker, NotificationType.member_left, family_id, identity.user_id, f"{label} left the family group")
    else:
        notify(
            db,
            broker,
            NotificationType.member_removed,
            family_id,
            identity.user_id,
            f"{label} was removed from the family group",
        )
