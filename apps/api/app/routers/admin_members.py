from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.services.identity_provider import IdentityResolver, get_identity_resolver
from app.services.member_emails import backfill_member_emails

router = APIRouter(prefix="/v1/admin/members", tags=["admin"])


@router.post("/backfill-emails")
async def backfill_emails(
    db: Session = Depends(get_db),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    x_internal_admin_token: str | None = Header(default=None, alias="X-Internal-Admin-Token"),
):
    if not x_internal_admin_token or x_internal_admin_token != settings.internal_admin_token:
        raise HTTPException(status_code=401, detail="invalid internal admin token")

    try:
        stats = await backfill_member_emails(db, resolver)
    except Exception as exc:
        db.rollback()
        raise HTTPException(status_code=502, detail=f"identity provider lookup failed: {exc}") from exc

    return {"missing": stats.missing, "updated": stats.updated}
