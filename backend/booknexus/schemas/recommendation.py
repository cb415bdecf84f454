from pydantic import BaseModel
from typing import Optional, List
from uuid import UUID


class RecommendationItem(BaseModel):
    book_id: UUID
    title: str
    subtitle: Optional[str] = None
    author_name: Optional[str] = None
    series_name: Optional[str] = None
    series_position: Optional[int] = None
    image_url: Optional[str] = None
    score: int
    signals: List[str]  # which of series/author/tags contributed


class RecommendationsResponse(BaseModel):
    book_id: UUID
    items: List[RecommendationItem]
