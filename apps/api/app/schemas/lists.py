from datetime import datetime

from pydantic import BaseModel, Field


class SharedListCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class SharedListUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class SharedListResponse(BaseModel):
    id: int
    family_id: int
    name: str
    created_by: str
    created_at: datetime
    updated_at: datetime | None = None


class SharedListListResponse(BaseModel):
    items: list[SharedListResponse]
