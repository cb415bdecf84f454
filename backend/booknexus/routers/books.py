from fastapi import APIRouter, Depends, Query, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

from booknexus.database import get_db
from booknexus.core.errors import BookNotFound
from booknexus.schemas.book import BookDetailResponse, BookListResponse, BookResponse
from booknexus.services import catalog_service
from booknexus.services.catalog_service import BookSearch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])


@router.get("", response_model=BookListResponse)
def list_books(
    q: Optional[str] = Query(None, description="Search in title, subtitle or description"),
    author_id: Optional[UUID] = Query(None),
    publisher_id: Optional[UUID] = Query(None),
    series_id: Optional[UUID] = Query(None),
    author: Optional[str] = Query(None, description="Filter by author name"),
    genre: Optional[str] = Query(None, description="Filter by genre"),
    sort: str = Query("title_asc", description="title_asc, title_desc, date_asc, date_desc or author"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Search and page through the catalog."""
    books, total = catalog_service.search_books(
        db,
        BookSearch(
            query=q,
            author_id=author_id,
            publisher_id=publisher_id,
            series_id=series_id,
            author_name=author,
            genre=genre,
            sort_by=sort,
            limit=limit,
            offset=offset,
        ),
    )
    logger.info("Fetched %d of %d books (q=%s, sort=%s, offset=%d)", len(books), total, q, sort, offset)
    return BookListResponse(
        items=[BookResponse.model_validate(book) for book in books],
        total=total,
    )


@router.get("/{book_id}", response_model=BookDetailResponse)
def get_book(book_id: UUID, db: Session = Depends(get_db)):
    """Get full details of a specific book."""
    try:
        book = catalog_service.get_book(db, book_id)
    except BookNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found",
        )
    return BookDetailResponse.model_validate(book)
