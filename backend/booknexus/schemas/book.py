from pydantic import BaseModel
from typing import Optional
from datetime import date, datetime
from uuid import UUID
from booknexus.schemas.entity import EntitySummary


class BookResponse(BaseModel):
    id: UUID
    title: str
    subtitle: Optional[str]
    author_id: UUID
    publisher_id: Optional[UUID]
    published_date: Optional[date]
    isbn10: Optional[str]
    isbn13: Optional[str]
    pages: Optional[int]
    language: Optional[str]
    description: Optional[str]
    series_id: Optional[UUID]
    series_position: Optional[int]
    genres: Optional[str]
    tags: Optional[str]
    image_url: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class BookDetailResponse(BookResponse):
    author: EntitySummary
    publisher: Optional[EntitySummary] = None
    series: Optional[EntitySummary] = None


class BookListResponse(BaseModel):
    items: list[BookResponse]
    total: int
