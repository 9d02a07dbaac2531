from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.auth import Identity, get_identity
from app.core.db import get_db
from app.schemas.lists import SharedListCreate, SharedListListResponse, SharedListResponse, SharedListUpdate
from app.services import lists as shared_lists
from app.services.realtime import RealtimeBroker, get_broker

router = APIRouter(prefix="/v1/families/{family_id}/lists", tags=["lists"])


@router.get("", response_model=SharedListListResponse)
def list_shared_lists(
    family_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    items = shared_lists.list_shared_lists(db, identity, family_id)
    return SharedListListResponse(items=[SharedListResponse.model_validate(item, from_attributes=True) for item in items])


@router.post("", response_model=SharedListResponse)
def create_shared_list(
    family_id: int,
    payload: SharedListCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    item = shared_lists.create_shared_list(db, broker, identity, family_id, payload.name)
    return SharedListResponse.model_validate(item, from_attributes=True)


@router.patch("/{list_id}", response_model=SharedListResponse)
def rename_shared_list(
    family_id: int,
    list_id: int,
    payload: SharedListUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    item = shared_lists.rename_shared_list(db, broker, identity, family_id, list_id, payload.name)
    return SharedListResponse.model_validate(item, from_attributes=True)


@router.delete("/{list_id}")
def delete_shared_list(
    family_id: int,
    list_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    broker: RealtimeBroker = Depends(get_broker),
):
    shared_lists.delete_shared_list(db, broker, identity, family_id, list_id)
    return {"success": True}
