from datetime import datetime

from pydantic import BaseModel, Field


class FamilyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class FamilyUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class FamilyResponse(BaseModel):
    id: int
    name: str
    created_by: str
    created_at: datetime
    updated_at: datetime | None = None


class FamilyListResponse(BaseModel):
    items: list[FamilyResponse]


class FamilyMemberUpdate(BaseModel):
    role: str = Field(pattern="^(admin|editor|viewer)$")


class FamilyMemberResponse(BaseModel):
    id: int
    family_id: int
    user_id: str
    email: str | None
    role: str
    invited_by: str | None = None
    joined_at: datetime


class FamilyMemberListResponse(BaseModel):
    items: list[FamilyMemberResponse]
