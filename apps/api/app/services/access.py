from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.auth import Identity
from app.core.errors import Forbidden, NotFound
from app.models.entities import FamilyGroup, FamilyMember
from app.services.roles import Capability, can


def get_membership(db: Session, family_id: int, user_id: str) -> FamilyMember | None:
    return db.execute(
        select(FamilyMember).where(FamilyMember.family_id == family_id, FamilyMember.user_id == user_id)
    ).scalar_one_or_none()


def require_family(db: Session, family_id: int) -> FamilyGroup:
    family = db.get(FamilyGroup, family_id)
    if family is None:
        raise NotFound("family group not found")
    return family


def require_member(db: Session, identity: Identity, family_id: int) -> FamilyMember:
    member = get_membership(db, family_id, identity.user_id)
    if member is None:
        raise Forbidden("not a member of this family group")
    return member


def check(db: Session, identity: Identity, family_id: int, capability: Capability) -> FamilyMember:
    """
    Single authorization choke point for family-scoped operations.

    Returns the caller's membership when its role grants `capability`, raises Forbidden
    otherwise (including when the caller is not a member at all).
    """
    member = require_member(db, identity, family_id)
    if not can(member.role, capability):
        raise Forbidden(f"{capability.value} permission required")
    return member


def is_allowed(db: Session, identity: Identity, family_id: int, capability: Capability) -> bool:
    member = get_membership(db, family_id, identity.user_id)
    return member is not None and can(member.role, capability)
