from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from booknexus.database import get_db
from booknexus.core.config import settings
from booknexus.core.errors import BookNotFound
from booknexus.schemas.recommendation import RecommendationItem, RecommendationsResponse
from booknexus.services import recommendation_engine
from booknexus.utils.timing import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])


@router.get("/books/{book_id}/recommendations", response_model=RecommendationsResponse)
def get_recommendations(
    book_id: UUID,
    limit: int = Query(settings.RECOMMEND_DEFAULT_LIMIT, ge=1, le=settings.RECOMMEND_MAX_LIMIT),
    db: Session = Depends(get_db),
):
    """Books related to `book_id` by series, author and shared tags."""
    t0 = now_ms()
    try:
        scored = recommendation_engine.score_recommendations(db, book_id, limit)
    except BookNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found",
        )

    items = [
        RecommendationItem(
            book_id=entry.book.id,
            title=entry.book.title,
            subtitle=entry.book.subtitle,
            author_name=entry.book.author.name if entry.book.author else None,
            series_name=entry.book.series.name if entry.book.series else None,
            series_position=entry.book.series_position,
            image_url=entry.book.image_url,
            score=entry.score,
            signals=entry.signals,
        )
        for entry in scored
    ]

    logger.info(
        "Recommendations for book=%s limit=%d count=%d in %.2fms",
        book_id, limit, len(items), now_ms() - t0,
    )
    return RecommendationsResponse(book_id=book_id, items=items)
