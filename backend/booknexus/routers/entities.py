"""
Read-only routes for authors, publishers and series.

The three kinds share one shape, so the router is built per kind.
"""
from fastapi import APIRouter, Depends, Query, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional
import logging

from booknexus.database import get_db
from booknexus.core.errors import EntityNotFound
from booknexus.models import EntityKind
from booknexus.schemas.book import BookResponse
from booknexus.schemas.entity import EntityDetailResponse, EntityListResponse, EntitySummary
from booknexus.services import catalog_service

logger = logging.getLogger(__name__)


def _get_by_slug_or_404(db: Session, kind: EntityKind, slug: str):
    try:
        return catalog_service.get_entity_by_slug(db, kind, slug)
    except EntityNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{kind.value.capitalize()} not found",
        )


def build_entity_router(kind: EntityKind, prefix: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[prefix.strip("/")])

    @router.get("", response_model=EntityListResponse)
    def list_entities(
        search: Optional[str] = Query(None, description="Search by name"),
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
        db: Session = Depends(get_db),
    ):
        rows, total = catalog_service.list_entities(db, kind, search=search, limit=limit, offset=offset)
        return EntityListResponse(
            items=[EntitySummary.model_validate(row) for row in rows],
            total=total,
        )

    @router.get("/{slug}", response_model=EntityDetailResponse)
    def get_entity(slug: str, db: Session = Depends(get_db)):
        entity = _get_by_slug_or_404(db, kind, slug)
        return EntityDetailResponse(
            id=entity.id,
            kind=kind.value,
            name=entity.name,
            slug=entity.slug,
            bio=getattr(entity, "bio", None),
            website=getattr(entity, "website", None),
            description=getattr(entity, "description", None),
            book_count=catalog_service.entity_book_count(db, kind, entity.id),
        )

    @router.get("/{slug}/books", response_model=list[BookResponse])
    def get_entity_books(slug: str, db: Session = Depends(get_db)):
        entity = _get_by_slug_or_404(db, kind, slug)
        return catalog_service.books_for_entity(db, kind, entity.id)

    return router


authors_router = build_entity_router(EntityKind.AUTHOR, "/authors")
publishers_router = build_entity_router(EntityKind.PUBLISHER, "/publishers")
series_router = build_entity_router(EntityKind.SERIES, "/series")
