from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session, sessionmaker

from app.core.auth import Identity, get_identity
from app.core.db import get_db, get_session_factory
from app.models.entities import FamilyGroup, FamilyMember
from app.schemas.families import (
    FamilyCreate,
    FamilyListResponse,
    FamilyMemberListResponse,
    FamilyMemberResponse,
    FamilyMemberUpdate,
    FamilyResponse,
    FamilyUpdate,
)
from app.services import families as family_store
from app.services.identity_provider import IdentityResolver, get_identity_resolver
from app.services.member_emails import backfill_family_member_emails
from app.services.realtime import RealtimeBroker, get_broker

router = APIRouter(prefix="/v1/families", tags=["families"])


def _to_family_response(family: FamilyGroup) -> FamilyResponse:
    return FamilyResponse.model_validate(family, from_attributes=True)


def _to_member_response(member: FamilyMember) -> FamilyMemberResponse:
    return FamilyMemberResponse(
        id=member.id,
        family_id=member.family_id,
        user_id=member.user_id,
        email=member.email,
        role=member.role.value,
        invited_by=member.invited_by,
        joined_at=member.joined_at,
    )


@router.get("", response_model=FamilyListResponse)
def list_families(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    families = family_store.list_groups_for(db, identity)
    return FamilyListResponse(items=[_to_family_response(item) for item in families])


@router.post("", response_model=FamilyResponse)
def create_family(
    payload: FamilyCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    family = family_store.create_group(db, identity, payload.name)
    return _to_family_response(family)


@router.get("/{family_id}", response_model=FamilyResponse)
def get_family(
    family_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return _to_family_response(family_store.get_group(db, identity, family_id))


@router.patch("/{family_id}", response_model=FamilyResponse)
def update_family(
    family_id: int,
    payload: FamilyUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    family = family_store.update_group(db, broker, identity, family_id, payload.name)
    return _to_family_response(family)


@router.delete("/{family_id}")
def delete_family(
    family_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    family_store.delete_group(db, broker, identity, family_id)
    return {"success": True}


@router.get("/{family_id}/members", response_model=FamilyMemberListResponse)
def list_family_members(
    family_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    session_factory: sessionmaker = Depends(get_session_factory),
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    members = family_store.list_members(db, identity, family_id)
    if any(member.email is None for member in members):
        # Best-effort; the response is served with whatever emails we have now.
        background_tasks.add_task(backfill_family_member_emails, session_factory, resolver, family_id)
    return FamilyMemberListResponse(items=[_to_member_response(item) for item in members])


@router.patch("/{family_id}/members/{user_id}", response_model=FamilyMemberResponse)
def update_family_member(
    family_id: int,
    user_id: str,
    payload: FamilyMemberUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    member = family_store.update_member_role(db, broker, identity, family_id, user_id, payload.role)
    return _to_member_response(member)


@router.delete("/{family_id}/members/{user_id}")
def delete_family_member(
    family_id: int,
    user_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    family_store.remove_member(db, broker, identity, family_id, user_id)
    return {"success": True}
