from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.models.entities import FamilyMember
from app.services.identity_provider import IdentityResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackfillStats:
    missing: int = 0
    updated: int = 0


async def backfill_member_emails(
    db: Session, resolver: IdentityResolver, *, family_id: int | None = None
) -> BackfillStats:
    """
    Fill in FamilyMember.email for memberships that lack it.

    Every row for a resolved user is updated, so one lookup covers all of that user's
    families. Users the identity provider does not know are left untouched.
    """
    query = select(FamilyMember).where(FamilyMember.email.is_(None))
    if family_id is not None:
        query = query.where(FamilyMember.family_id == family_id)
    members = db.execute(query).scalars().all()
    if not members:
        return BackfillStats()

    user_ids = sorted({member.user_id for member in members})
    emails = await resolver.resolve_emails(user_ids)

    updated = 0
    for member in members:
        email = emails.get(member.user_id)
        if email:
            member.email = email
            updated += 1
    db.commit()
    return BackfillStats(missing=len(members), updated=updated)


async def backfill_family_member_emails(
    session_factory: sessionmaker, resolver: IdentityResolver, family_id: int
) -> None:
    # Runs detached from the request that scheduled it; never raises.
    db = session_factory()
    try:
        stats = await backfill_member_emails(db, resolver, family_id=family_id)
        logger.info(
            "member email backfill family_id=%s missing=%d updated=%d", family_id, stats.missing, stats.updated
        )
    except Exception:
        db.rollback()
        logger.warning("member email backfill failed family_id=%s", family_id, exc_info=True)
    finally:
        db.close()
