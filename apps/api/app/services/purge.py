from __future__ import annotations

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.models.entities import (
    FamilyGroup,
    FamilyInvitation,
    FamilyMember,
    Notification,
    SharedGroceryList,
)


def purge_family(db: Session, family_id: int) -> None:
    """
    Hard-delete a family group and all dependent records.

    We do this explicitly (instead of relying on ON DELETE CASCADE) so the cascade also
    holds on backends that do not enforce foreign keys, such as SQLite without the pragma.
    The caller owns the transaction.
    """
    db.execute(delete(Notification).where(Notification.family_id == family_id))
    db.execute(delete(SharedGroceryList).where(SharedGroceryList.family_id == family_id))
    db.execute(delete(FamilyInvitation).where(FamilyInvitation.family_id == family_id))
    db.execute(delete(FamilyMember).where(FamilyMember.family_id == family_id))
    db.execute(delete(FamilyGroup).where(FamilyGroup.id == family_id))
