"""
Error taxonomy for the access-control subsystem.

Every error is an HTTPException so routers let them propagate and FastAPI renders
the status code and detail.
"""

from __future__ import annotations

from fastapi import HTTPException


class FamilyAccessError(HTTPException):
    status_code = 500
    default_detail = "internal error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class ValidationError(FamilyAccessError):
    status_code = 400
    default_detail = "invalid input"


class Unauthorized(FamilyAccessError):
    status_code = 401
    default_detail = "authentication required"


class Forbidden(FamilyAccessError):
    status_code = 403
    default_detail = "forbidden"


class NotFound(FamilyAccessError):
    status_code = 404
    default_detail = "not found"


class Conflict(FamilyAccessError):
    status_code = 409
    default_detail = "conflict"


class AlreadyRespondedError(Conflict):
    default_detail = "invitation has already been responded to"


class LastAdminError(Conflict):
    status_code = 400
    default_detail = "a family group must keep at least one admin"


class AlreadyMemberError(Conflict):
    status_code = 400
    default_detail = "user is already a member of this family group"


class DuplicateInvitationError(Conflict):
    status_code = 400
    default_detail = "an invitation is already pending for this email"


class Expired(FamilyAccessError):
    status_code = 410
    default_detail = "expired"


class InvitationExpiredError(Expired):
    default_detail = "invitation has expired"
