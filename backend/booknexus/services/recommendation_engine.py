"""
"More like this" recommendations for a single book.

Three independent signals score candidate books:
- same series:  W_SERIES points
- same author:  W_AUTHOR points
- shared tags:  W_TAG per shared tag, capped at W_TAG_CAP

Scores add up per book, the list is sorted by total score and truncated.
A failing signal query only loses that signal; a missing seed book is an error.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booknexus.core.config import settings
from booknexus.models import Book
from booknexus.services import catalog_service

logger = logging.getLogger(__name__)

W_SERIES = settings.RECOMMEND_SERIES_WEIGHT
W_AUTHOR = settings.RECOMMEND_AUTHOR_WEIGHT
W_TAG = settings.RECOMMEND_TAG_WEIGHT
W_TAG_CAP = settings.RECOMMEND_TAG_CAP
TAG_OVERFETCH = settings.RECOMMEND_TAG_OVERFETCH

SIGNAL_SERIES = "series"
SIGNAL_AUTHOR = "author"
SIGNAL_TAGS = "tags"


@dataclass(frozen=True)
class ScoringWeights:
    series: int = W_SERIES
    author: int = W_AUTHOR
    tag: int = W_TAG
    tag_cap: int = W_TAG_CAP
    tag_overfetch: int = TAG_OVERFETCH


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass
class ScoredBook:
    """A candidate book, its summed score and the signals that contributed."""
    book: Book
    score: int = 0
    signals: list[str] = field(default_factory=list)


def _run_signal(db: Session, name: str, seed_id: UUID, fetch: Callable[[], list]) -> list:
    """Run one signal query; on a store error log it and return no candidates."""
    try:
        return fetch()
    except SQLAlchemyError as e:
        # A failed statement leaves Postgres transactions aborted
        db.rollback()
        logger.warning(
            "Recommendation signal %s failed for book %s, continuing without it: %s",
            name, seed_id, e,
        )
        return []


def score_recommendations(
    db: Session,
    book_id: UUID,
    limit: Optional[int] = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> list[ScoredBook]:
    """
    Score books related to `book_id` and return the top `limit`.

    Ties keep first-seen order: series candidates first (in reading order),
    then author candidates (by title), then tag candidates (by overlap, title).

    Raises:
        BookNotFound: if the seed book does not exist
    """
    if limit is None:
        limit = settings.RECOMMEND_DEFAULT_LIMIT

    seed = catalog_service.get_book(db, book_id)
    if limit <= 0:
        return []

    seed_id = seed.id
    series_id = seed.series_id
    author_id = seed.author_id
    seed_tags = seed.tags

    scored: dict[UUID, ScoredBook] = {}

    def add(book: Book, points: int, signal: str) -> None:
        entry = scored.get(book.id)
        if entry is None:
            entry = scored[book.id] = ScoredBook(book=book)
        entry.score += points
        entry.signals.append(signal)

    if series_id is not None:
        series_books = _run_signal(
            db, SIGNAL_SERIES, seed_id,
            lambda: catalog_service.books_in_series(db, series_id, seed_id, limit),
        )
        for book in series_books:
            add(book, weights.series, SIGNAL_SERIES)

    author_books = _run_signal(
        db, SIGNAL_AUTHOR, seed_id,
        lambda: catalog_service.books_by_author(db, author_id, seed_id, limit),
    )
    for book in author_books:
        add(book, weights.author, SIGNAL_AUTHOR)

    if seed_tags and seed_tags.strip():
        tag_matches = _run_signal(
            db, SIGNAL_TAGS, seed_id,
            lambda: catalog_service.books_sharing_tags(db, seed_id, seed_tags, limit * weights.tag_overfetch),
        )
        for book, overlap in tag_matches:
            add(book, min(overlap * weights.tag, weights.tag_cap), SIGNAL_TAGS)

    # sorted() is stable, so equal scores keep insertion order
    ranked = sorted(scored.values(), key=lambda entry: entry.score, reverse=True)
    logger.debug(
        "Recommendations for %s: %d candidates, returning %d",
        seed_id, len(ranked), min(len(ranked), limit),
    )
    return ranked[:limit]


def recommend(
    db: Session,
    book_id: UUID,
    limit: Optional[int] = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> list[UUID]:
    """Ids of the books most related to `book_id`, best first, at most `limit`."""
    return [entry.book.id for entry in score_recommendations(db, book_id, limit, weights)]
