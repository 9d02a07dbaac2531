from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class InvitationCreate(BaseModel):
    email: EmailStr
    role: str = Field(default="editor", pattern="^(admin|editor|viewer)$")


class InvitationRespond(BaseModel):
    action: str = Field(pattern="^(accept|reject)$")


class InvitationResponse(BaseModel):
    id: str
    family_id: int
    family_name: str | None = None
    email: str
    role: str
    status: str
    invited_by: str
    created_at: datetime
    expires_at: datetime
    responded_at: datetime | None = None


class InvitationListResponse(BaseModel):
    items: list[InvitationResponse]


class InvitationRespondResponse(BaseModel):
    invitation: InvitationResponse
    family_id: int
    member_role: str | None = None
