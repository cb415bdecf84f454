"""
Read and CRUD operations over books, authors, publishers and series.

Also holds the three store queries the recommendation engine is built on
(same series, same author, shared tags).
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import asc, case, desc, func, or_
from sqlalchemy.orm import Session

from booknexus.core.config import settings
from booknexus.core.errors import BookNotFound, EntityInUse, EntityNotFound
from booknexus.models import Author, Book, EntityKind, ENTITY_MODELS, BOOK_REFERENCE_COLUMNS
from booknexus.services.entity_resolver import find_unique_slug
from booknexus.utils.slug import slugify

logger = logging.getLogger(__name__)

TAG_SEPARATORS = re.compile(r"[,;]")

BOOK_SORTS = {
    "title_asc": [asc(Book.title)],
    "title_desc": [desc(Book.title)],
    "date_asc": [Book.published_date.is_(None), asc(Book.published_date)],
    "date_desc": [Book.published_date.is_(None), desc(Book.published_date)],
    "author": [asc(Author.name), asc(Book.title)],
}

BOOK_FIELDS = {
    "title", "subtitle", "author_id", "publisher_id", "published_date", "isbn10",
    "isbn13", "pages", "language", "description", "series_id", "series_position",
    "genres", "tags", "image_url",
}

ENTITY_FIELDS = {
    EntityKind.AUTHOR: {"name", "slug", "bio"},
    EntityKind.PUBLISHER: {"name", "slug", "website", "description"},
    EntityKind.SERIES: {"name", "slug", "description"},
}


def split_tags(tags: Optional[str]) -> list[str]:
    """Split a freeform tag string on ',' and ';' into unique lower-cased tokens, in order."""
    if not tags:
        return []
    seen: list[str] = []
    for token in TAG_SEPARATORS.split(tags):
        token = token.strip().lower()
        if token and token not in seen:
            seen.append(token)
    return seen


# ----------------------------
# Books
# ----------------------------

def get_book(db: Session, book_id: UUID) -> Book:
    book = db.get(Book, book_id)
    if book is None:
        raise BookNotFound(book_id)
    return book


@dataclass
class BookSearch:
    query: Optional[str] = None
    author_id: Optional[UUID] = None
    publisher_id: Optional[UUID] = None
    series_id: Optional[UUID] = None
    author_name: Optional[str] = None
    genre: Optional[str] = None
    sort_by: str = "title_asc"
    limit: int = 20
    offset: int = 0


def search_books(db: Session, params: BookSearch) -> tuple[list[Book], int]:
    """Filter, sort and page books. Returns (page, total matching)."""
    query = db.query(Book).join(Author, Book.author_id == Author.id)

    if params.query:
        term = f"%{params.query.strip()}%"
        query = query.filter(
            or_(
                Book.title.ilike(term),
                Book.subtitle.ilike(term),
                Book.description.ilike(term),
            )
        )
    if params.author_id:
        query = query.filter(Book.author_id == params.author_id)
    if params.publisher_id:
        query = query.filter(Book.publisher_id == params.publisher_id)
    if params.series_id:
        query = query.filter(Book.series_id == params.series_id)
    if params.author_name:
        query = query.filter(Author.name.ilike(f"%{params.author_name.strip()}%"))
    if params.genre:
        query = query.filter(Book.genres.ilike(f"%{params.genre.strip()}%"))

    total = query.count()

    ordering = BOOK_SORTS.get(params.sort_by, BOOK_SORTS["title_asc"])
    books = (
        query.order_by(*ordering, Book.id)
        .offset(params.offset)
        .limit(params.limit)
        .all()
    )
    return books, total


def create_book(db: Session, **fields: Any) -> Book:
    unknown = set(fields) - BOOK_FIELDS
    if unknown:
        raise ValueError(f"Unknown book fields: {', '.join(sorted(unknown))}")
    book = Book(**fields)
    db.add(book)
    db.commit()
    db.refresh(book)
    return book


def update_book(db: Session, book_id: UUID, **fields: Any) -> Book:
    """Partial update; only the given fields change."""
    unknown = set(fields) - BOOK_FIELDS
    if unknown:
        raise ValueError(f"Unknown book fields: {', '.join(sorted(unknown))}")
    book = get_book(db, book_id)
    for name, value in fields.items():
        setattr(book, name, value)
    db.commit()
    db.refresh(book)
    return book


def delete_book(db: Session, book_id: UUID) -> None:
    book = get_book(db, book_id)
    db.delete(book)
    db.commit()


# ----------------------------
# Recommendation queries
# ----------------------------

def books_in_series(db: Session, series_id: UUID, exclude_id: UUID, limit: int) -> list[Book]:
    """Other books in a series, in reading order."""
    return (
        db.query(Book)
        .filter(Book.series_id == series_id, Book.id != exclude_id)
        .order_by(Book.series_position.is_(None), Book.series_position, Book.title, Book.id)
        .limit(limit)
        .all()
    )


def books_by_author(db: Session, author_id: UUID, exclude_id: UUID, limit: int) -> list[Book]:
    return (
        db.query(Book)
        .filter(Book.author_id == author_id, Book.id != exclude_id)
        .order_by(Book.title, Book.id)
        .limit(limit)
        .all()
    )


def books_sharing_tags(
    db: Session,
    exclude_id: UUID,
    tags: Optional[str],
    limit: int,
    scan_limit: Optional[int] = None,
) -> list[tuple[Book, int]]:
    """
    Books sharing at least one tag with `tags`, ranked by number of shared tags.

    The SQL prefilter counts substring matches per book, orders by that count
    and loads at most `scan_limit` rows (RECOMMEND_TAG_SCAN_LIMIT by default,
    never fewer than `limit`). Exact token overlap is then counted here so
    "art" does not match "martial arts". A book's substring count is never
    below its exact overlap, so strong matches sort toward the front of the scan.
    """
    tokens = split_tags(tags)
    if not tokens or limit <= 0:
        return []

    if scan_limit is None:
        scan_limit = settings.RECOMMEND_TAG_SCAN_LIMIT
    scan_limit = max(scan_limit, limit)

    matches = [Book.tags.icontains(token, autoescape=True) for token in tokens]
    match_count = sum(case((match, 1), else_=0) for match in matches)

    candidates = (
        db.query(Book)
        .filter(
            Book.id != exclude_id,
            Book.tags.isnot(None),
            or_(*matches),
        )
        .order_by(match_count.desc(), Book.title, Book.id)
        .limit(scan_limit)
        .all()
    )

    wanted = set(tokens)
    ranked = []
    for book in candidates:
        overlap = len(wanted.intersection(split_tags(book.tags)))
        if overlap > 0:
            ranked.append((book, overlap))

    ranked.sort(key=lambda pair: (-pair[1], pair[0].title, str(pair[0].id)))
    return ranked[:limit]


# ----------------------------
# Authors / publishers / series
# ----------------------------

def get_entity(db: Session, kind: EntityKind, entity_id: UUID):
    entity = db.get(ENTITY_MODELS[kind], entity_id)
    if entity is None:
        raise EntityNotFound(kind, entity_id)
    return entity


def get_entity_by_slug(db: Session, kind: EntityKind, slug: str):
    model = ENTITY_MODELS[kind]
    entity = db.query(model).filter(model.slug == slug).one_or_none()
    if entity is None:
        raise EntityNotFound(kind, slug)
    return entity


def list_entities(
    db: Session,
    kind: EntityKind,
    search: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list, int]:
    model = ENTITY_MODELS[kind]
    query = db.query(model)
    if search:
        query = query.filter(model.name.ilike(f"%{search.strip()}%"))
    total = query.count()
    rows = query.order_by(model.name, model.id).offset(offset).limit(limit).all()
    return rows, total


def entity_book_count(db: Session, kind: EntityKind, entity_id: UUID) -> int:
    column = BOOK_REFERENCE_COLUMNS[kind]
    return db.query(func.count(Book.id)).filter(column == entity_id).scalar() or 0


def books_for_entity(db: Session, kind: EntityKind, entity_id: UUID) -> list[Book]:
    column = BOOK_REFERENCE_COLUMNS[kind]
    query = db.query(Book).filter(column == entity_id)
    if kind == EntityKind.SERIES:
        query = query.order_by(Book.series_position.is_(None), Book.series_position, Book.title)
    else:
        query = query.order_by(Book.title)
    return query.all()


def update_entity(db: Session, kind: EntityKind, entity_id: UUID, **fields: Any):
    """
    Partial update of an author/publisher/series.

    Renaming re-derives a unique slug unless an explicit slug is passed.
    An explicit empty slug clears it.
    """
    unknown = set(fields) - ENTITY_FIELDS[kind]
    if unknown:
        raise ValueError(f"Unknown {kind.value} fields: {', '.join(sorted(unknown))}")

    entity = get_entity(db, kind, entity_id)

    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not name:
            raise ValueError("name must not be empty")
        fields["name"] = name
        if "slug" not in fields and name != entity.name:
            base = slugify(name)
            fields["slug"] = entity.slug if entity.slug and entity.slug == base else find_unique_slug(db, kind, base)
    if "slug" in fields:
        fields["slug"] = fields["slug"] or None

    for name, value in fields.items():
        setattr(entity, name, value)
    db.commit()
    db.refresh(entity)
    logger.info("Updated %s %s: %s", kind.value, entity_id, sorted(fields))
    return entity


def delete_entity(db: Session, kind: EntityKind, entity_id: UUID) -> None:
    """
    Delete an entity. Authors with books cannot be deleted; publishers and
    series are detached from their books first.
    """
    entity = get_entity(db, kind, entity_id)
    count = entity_book_count(db, kind, entity_id)

    if count and kind == EntityKind.AUTHOR:
        raise EntityInUse(kind, entity_id, count)
    if count:
        column = BOOK_REFERENCE_COLUMNS[kind]
        values = {column.key: None}
        if kind == EntityKind.SERIES:
            values["series_position"] = None
        db.query(Book).filter(column == entity_id).update(values, synchronize_session=False)

    db.delete(entity)
    db.commit()
    logger.info("Deleted %s %s (detached %d books)", kind.value, entity_id, count)
