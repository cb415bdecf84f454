from pydantic import BaseModel
from typing import Optional
from uuid import UUID


class EntitySummary(BaseModel):
    id: UUID
    name: str
    slug: Optional[str]

    class Config:
        from_attributes = True


class EntityDetailResponse(BaseModel):
    """An author, publisher or series with its book count."""
    id: UUID
    kind: str
    name: str
    slug: Optional[str]
    bio: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    book_count: int


class EntityListResponse(BaseModel):
    items: list[EntitySummary]
    total: int
