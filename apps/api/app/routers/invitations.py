from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.core.auth import Identity, get_identity
from app.core.clock import Clock, get_clock
from app.core.db import get_db
from app.models.entities import FamilyGroup, FamilyInvitation
from app.schemas.invitations import (
    InvitationCreate,
    InvitationListResponse,
    InvitationRespond,
    InvitationRespondResponse,
    InvitationResponse,
)
from app.services import invitations as lifecycle
from app.services.delivery import EmailDispatcher, get_email_dispatcher, send_invitation_email
from app.services.realtime import RealtimeBroker, get_broker

router = APIRouter(prefix="/v1", tags=["invitations"])


def _to_invitation_response(db: Session, invitation: FamilyInvitation) -> InvitationResponse:
    family = db.get(FamilyGroup, invitation.family_id)
    return InvitationResponse(
        id=invitation.id,
        family_id=invitation.family_id,
        family_name=family.name if family is not None else None,
        email=invitation.email,
        role=invitation.role.value,
        status=invitation.status.value,
        invited_by=invitation.invited_by,
        created_at=invitation.created_at,
        expires_at=invitation.expires_at,
        responded_at=invitation.responded_at,
    )


@router.post("/families/{family_id}/invitations", response_model=InvitationResponse)
def create_invitation(
    family_id: int,
    payload: InvitationCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    clock: Clock = Depends(get_clock),
    broker: RealtimeBroker = Depends(get_broker),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    invitation = lifecycle.create_invitation(
        db, broker, identity, family_id, str(payload.email), payload.role, now=clock.now()
    )
    # The invitee has no user id yet, so email is the only channel that reaches them.
    message = lifecycle.invitation_email(db, invitation, identity.email)
    background_tasks.add_task(send_invitation_email, dispatcher, message)
    return _to_invitation_response(db, invitation)


@router.get("/families/{family_id}/invitations", response_model=InvitationListResponse)
def list_family_invitations(
    family_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    clock: Clock = Depends(get_clock),
):
    invitations = lifecycle.list_pending(db, identity, family_id, now=clock.now())
    return InvitationListResponse(items=[_to_invitation_response(db, item) for item in invitations])


@router.get("/invitations", response_model=InvitationListResponse)
def list_my_invitations(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    clock: Clock = Depends(get_clock),
):
    invitations = lifecycle.list_invitations_for(db, identity, now=clock.now())
    return InvitationListResponse(items=[_to_invitation_response(db, item) for item in invitations])


@router.get("/invitations/{invitation_id}", response_model=InvitationResponse)
def get_invitation(
    invitation_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    clock: Clock = Depends(get_clock),
):
    invitation = lifecycle.get_invitation(db, identity, invitation_id, now=clock.now())
    return _to_invitation_response(db, invitation)


@router.patch("/invitations/{invitation_id}", response_model=InvitationRespondResponse)
def respond_to_invitation(
    invitation_id: str,
    payload: InvitationRespond,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    clock: Clock = Depends(get_clock),
    broker: RealtimeBroker = Depends(get_broker),
):
    result = lifecycle.respond_to_invitation(db, broker, identity, invitation_id, payload.action, now=clock.now())
    return InvitationRespondResponse(
        invitation=_to_invitation_response(db, result.invitation),
        family_id=result.invitation.family_id,
        member_role=result.member.role.value if result.member is not None else None,
    )


@router.delete("/invitations/{invitation_id}")
def cancel_invitation(
    invitation_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    lifecycle.cancel_invitation(db, broker, identity, invitation_id)
    return {"success": True}
