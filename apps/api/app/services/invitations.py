"""
Invitation lifecycle.

Stored states are pending, accepted and rejected. Expiry is derived: a pending
invitation whose expires_at has passed is terminal, but nothing sweeps it. Transitions
out of pending are a conditional UPDATE on status, so concurrent responders get exactly
one winner.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.auth import Identity, normalize_email
from app.core.clock import as_utc
from app.core.errors import (
    AlreadyMemberError,
    AlreadyRespondedError,
    DuplicateInvitationError,
    Forbidden,
    InvitationExpiredError,
    NotFound,
    ValidationError,
)
from app.models.entities import FamilyInvitation, FamilyMember, InvitationStatusEnum
from app.services.access import check, get_membership, require_family, require_member
from app.services.delivery import InvitationEmail
from app.services.families import member_payload
from app.services.notifications import NotificationType, notify
from app.services.realtime import RealtimeBroker, family_channel
from app.services.roles import Capability, parse_role

logger = logging.getLogger(__name__)

INVITATION_TTL = timedelta(days=7)
RESPONSE_ACTIONS = ("accept", "reject")


@dataclass(frozen=True)
class RespondResult:
    invitation: FamilyInvitation
    member: FamilyMember | None = None


def is_expired(invitation: FamilyInvitation, now: datetime) -> bool:
    return as_utc(now) > as_utc(invitation.expires_at)


def invitation_payload(invitation: FamilyInvitation) -> dict:
    return {
        "id": invitation.id,
        "family_id": invitation.family_id,
        "email": invitation.email,
        "role": invitation.role.value,
        "status": invitation.status.value,
    }


def _validate_email(email: str) -> str:
    normalized = normalize_email(email or "")
    local, _, domain = normalized.partition("@")
    if not local or "." not in domain:
        raise ValidationError("invalid email address")
    return normalized


def _resolve_user_id(db: Session, email: str) -> str | None:
    # The invitee only has a user id here if some membership row already carries their email.
    return db.execute(select(FamilyMember.user_id).where(FamilyMember.email == email).limit(1)).scalar_one_or_none()


def create_invitation(
    db: Session,
    broker: RealtimeBroker,
    identity: Identity,
    family_id: int,
    email: str,
    role: str,
    *,
    now: datetime,
) -> FamilyInvitation:
    family = require_family(db, family_id)
    check(db, identity, family_id, Capability.invite)
    normalized = _validate_email(email)
    invited_role = parse_role(role)

    existing_member = db.execute(
        select(FamilyMember.id).where(FamilyMember.family_id == family_id, FamilyMember.email == normalized)
    ).first()
    if existing_member is not None:
        raise AlreadyMemberError()

    pending = db.execute(
        select(FamilyInvitation).where(
            FamilyInvitation.family_id == family_id,
            FamilyInvitation.email == normalized,
            FamilyInvitation.status == InvitationStatusEnum.pending,
        )
    ).scalar_one_or_none()
    if pending is not None:
        if not is_expired(pending, now):
            raise DuplicateInvitationError()
        # An expired pending row is terminal; drop it so the pending index admits the new one.
        db.delete(pending)
        db.flush()

    invitation = FamilyInvitation(
        id=str(uuid.uuid4()),
        family_id=family_id,
        email=normalized,
        role=invited_role,
        status=InvitationStatusEnum.pending,
        invited_by=identity.user_id,
        created_at=now,
        expires_at=now + INVITATION_TTL,
    )
    db.add(invitation)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateInvitationError() from None
    db.refresh(invitation)
    logger.info("invitation created id=%s family_id=%s role=%s", invitation.id, family_id, invited_role.value)

    broker.publish(family_channel(family_id), "invitation.created", invitation_payload(invitation))
    invitee_user_id = _resolve_user_id(db, normalized)
    if invitee_user_id is not None:
        notify(
            db,
            broker,
            NotificationType.invitation,
            family_id,
            identity.user_id,
            f'{identity.email} invited you to join "{family.name}" as {invited_role.value}',
            recipients=[invitee_user_id],
        )
    return invitation


def invitation_email(db: Session, invitation: FamilyInvitation, inviter_email: str) -> InvitationEmail:
    family = require_family(db, invitation.family_id)
    return InvitationEmail(
        invitation_id=invitation.id,
        to=invitation.email,
        family_name=family.name,
        inviter_email=inviter_email,
        role=invitation.role.value,
        expires_at=as_utc(invitation.expires_at),
    )


def _require_invitation(db: Session, invitation_id: str) -> FamilyInvitation:
    invitation = db.get(FamilyInvitation, invitation_id)
    if invitation is None:
        raise NotFound("invitation not found")
    return invitation


def get_invitation(db: Session, identity: Identity, invitation_id: str, *, now: datetime) -> FamilyInvitation:
    """
    Visible to the invitee and to members of the inviting family.

    A pending invitation past its expiry raises InvitationExpiredError (410). Reissuing an
    invitation for the same family and email deletes the expired row, so its id is then
    NotFound (404); only the replacement is addressable.
    """
    invitation = _require_invitation(db, invitation_id)
    is_invitee = invitation.email == normalize_email(identity.email)
    if not is_invitee and get_membership(db, invitation.family_id, identity.user_id) is None:
        raise Forbidden("this invitation is not for you")
    if invitation.status == InvitationStatusEnum.pending and is_expired(invitation, now):
        raise InvitationExpiredError()
    return invitation


def respond_to_invitation(
    db: Session,
    broker: RealtimeBroker,
    identity: Identity,
    invitation_id: str,
    action: str,
    *,
    now: datetime,
) -> RespondResult:
    if action not in RESPONSE_ACTIONS:
        raise ValidationError('invalid action; must be "accept" or "reject"')

    invitation = _require_invitation(db, invitation_id)
    if invitation.email != normalize_email(identity.email):
        raise Forbidden("this invitation is not for you")
    if invitation.status != InvitationStatusEnum.pending:
        raise AlreadyRespondedError(f"invitation has already been {invitation.status.value}")
    if is_expired(invitation, now):
        raise InvitationExpiredError()

    new_status = InvitationStatusEnum.accepted if action == "accept" else InvitationStatusEnum.rejected
    family_id = invitation.family_id
    member: FamilyMember | None = None
    try:
        result = db.execute(
            update(FamilyInvitation)
            .where(FamilyInvitation.id == invitation.id, FamilyInvitation.status == InvitationStatusEnum.pending)
            .values(status=new_status, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyRespondedError()

        if new_status == InvitationStatusEnum.accepted:
            if get_membership(db, family_id, identity.user_id) is not None:
                raise AlreadyMemberError()
            member = FamilyMember(
                family_id=family_id,
                user_id=identity.user_id,
                email=identity.email,
                role=invitation.role,
                invited_by=invitation.invited_by,
                joined_at=now,
            )
            db.add(member)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyMemberError() from None
    except Exception:
        db.rollback()
        raise

    db.refresh(invitation)
    logger.info("invitation %s id=%s by=%s", new_status.value, invitation.id, identity.user_id)

    if member is not None:
        db.refresh(member)
        broker.publish(family_channel(family_id), "member.joined", member_payload(member))
        notify(
            db,
            broker,
            NotificationType.member_joined,
            family_id,
            identity.user_id,
            f"{identity.email} joined the family group as {member.role.value}",
        )
    else:
        broker.publish(family_channel(family_id), "invitation.rejected", invitation_payload(invitation))
        notify(
            db,
            broker,
            NotificationType.invitation_declined,
            family_id,
            identity.user_id,
            f"{identity.email} declined the invitation",
        )
    return RespondResult(invitation=invitation, member=member)


def cancel_invitation(db: Session, broker: RealtimeBroker, identity: Identity, invitation_id: str) -> None:
    invitation = _require_invitation(db, invitation_id)
    family_id = invitation.family_id
    check(db, identity, family_id, Capability.invite)
    if invitation.status != InvitationStatusEnum.pending:
        raise Forbidden("only pending invitations can be cancelled")

    payload = invitation_payload(invitation)
    result = db.execute(
        delete(FamilyInvitation)
        .where(FamilyInvitation.id == invitation_id, FamilyInvitation.status == InvitationStatusEnum.pending)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise Forbidden("only pending invitations can be cancelled")
    db.commit()
    broker.publish(family_channel(family_id), "invitation.cancelled", payload)


def list_pending(db: Session, identity: Identity, family_id: int, *, now: datetime) -> list[FamilyInvitation]:
    require_family(db, family_id)
    require_member(db, identity, family_id)
    query = (
        select(FamilyInvitation)
        .where(
            FamilyInvitation.family_id == family_id,
            FamilyInvitation.status == InvitationStatusEnum.pending,
            FamilyInvitation.expires_at >= now,
        )
        .order_by(FamilyInvitation.created_at.asc())
    )
    return list(db.execute(query).scalars().all())


def list_invitations_for(db: Session, identity: Identity, *, now: datetime) -> list[FamilyInvitation]:
    query = (
        select(FamilyInvitation)
        .where(
            FamilyInvitation.email == normalize_email(identity.email),
            FamilyInvitation.status == InvitationStatusEnum.pending,
            FamilyInvitation.expires_at >= now,
        )
        .order_by(FamilyInvitation.created_at.desc())
    )
    return list(db.execute(query).scalars().all())
