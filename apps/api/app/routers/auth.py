from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.auth import Identity, get_identity
from app.core.clock import Clock, get_clock
from app.core.db import get_db
from app.models.entities import FamilyGroup, FamilyMember
from app.services.invitations import list_invitations_for

router = APIRouter(prefix="/v1", tags=["auth"])


@router.get("/me")
def get_me(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    clock: Clock = Depends(get_clock),
):
    """
    Returns the authenticated user's identity, family memberships and the number of
    invitations waiting for them.
    """
    memberships = db.execute(
        select(FamilyMember, FamilyGroup)
        .join(FamilyGroup, FamilyGroup.id == FamilyMember.family_id)
        .where(FamilyMember.user_id == identity.user_id)
        .order_by(FamilyGroup.id.asc())
    ).all()

    return {
        "user_id": identity.user_id,
        "email": identity.email,
        "memberships": [
            {
                "family_id": family.id,
                "family_name": family.name,
                "member_id": member.id,
                "role": member.role.value,
            }
            for member, family in memberships
        ],
        "pending_invitations": len(list_invitations_for(db, identity, now=clock.now())),
    }
