"""
Get-or-create resolution of author, publisher and series names.

Rows in an import file carry names; books reference ids. The resolver turns a
name into the id of the one stored row with that name, creating it on first
sight. Creation is a single INSERT ... ON CONFLICT (name) DO NOTHING RETURNING
statement, so two processes importing the same author at the same time both
get the same row instead of one of them failing.

A ResolutionCache memoises name -> id for one run. It is an explicit object
owned by the caller so separate runs never share it.
"""
import logging
from collections import Counter
from typing import Optional
from uuid import UUID

from sqlalchemy import select, exists
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booknexus.core.config import settings
from booknexus.core.errors import ResolutionFailed
from booknexus.database import dialect_insert
from booknexus.models import EntityKind, ENTITY_MODELS
from booknexus.utils.slug import slugify

logger = logging.getLogger(__name__)

# Insert attempts before giving up on a slug and storing NULL instead
MAX_INSERT_ATTEMPTS = 3


class ResolutionCache:
    """Run-scoped memo of (kind, name) -> id, plus how many rows this run created."""

    def __init__(self):
        self._ids: dict[tuple[EntityKind, str], UUID] = {}
        self.created: Counter = Counter()

    def get(self, kind: EntityKind, name: str) -> Optional[UUID]:
        return self._ids.get((kind, name))

    def put(self, kind: EntityKind, name: str, entity_id: UUID, created: bool = False) -> None:
        self._ids[(kind, name)] = entity_id
        if created:
            self.created[kind] += 1

    def __contains__(self, key) -> bool:
        return key in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def find_unique_slug(
    db: Session,
    kind: EntityKind,
    base_slug: str,
    max_attempts: Optional[int] = None,
) -> Optional[str]:
    """
    Return base_slug, or base_slug-1, base_slug-2, ... whichever is free first.

    Returns None for an empty base slug, and also when every candidate within
    max_attempts is taken; the entity is then stored without a slug.
    """
    if not base_slug:
        return None

    model = ENTITY_MODELS[kind]
    attempts = max_attempts if max_attempts is not None else settings.SLUG_MAX_ATTEMPTS

    slug = base_slug
    for i in range(1, attempts + 1):
        taken = db.execute(select(exists().where(model.slug == slug))).scalar()
        if not taken:
            return slug
        slug = f"{base_slug}-{i}"

    logger.warning(
        "No free slug for %s %r after %d attempts, storing without slug",
        kind.value, base_slug, attempts,
    )
    return None


class EntityResolver:
    """
    Resolves names to ids for one import run.

    Each created entity is committed on its own so a later failure on the same
    row cannot roll back a row the cache already points at.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional[ResolutionCache] = None,
        max_slug_attempts: Optional[int] = None,
    ):
        self.db = db
        self.cache = cache if cache is not None else ResolutionCache()
        self.max_slug_attempts = max_slug_attempts

    def resolve(self, kind: EntityKind, name: str) -> UUID:
        """
        Return the id of the `kind` entity called `name`, creating it if needed.

        Raises:
            ResolutionFailed: on an empty name or an unrecoverable store error
        """
        name = (name or "").strip()
        if not name:
            raise ResolutionFailed(kind, name, ValueError("empty name"))

        cached = self.cache.get(kind, name)
        if cached is not None:
            return cached

        try:
            entity_id = self._lookup_id(kind, name)
            created = False
            if entity_id is None:
                entity_id, created = self._create(kind, name)
        except ResolutionFailed:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Store error resolving %s %r: %s", kind.value, name, e)
            raise ResolutionFailed(kind, name, e) from e

        self.cache.put(kind, name, entity_id, created=created)
        return entity_id

    def _lookup_id(self, kind: EntityKind, name: str) -> Optional[UUID]:
        model = ENTITY_MODELS[kind]
        return self.db.execute(select(model.id).where(model.name == name)).scalar_one_or_none()

    def _create(self, kind: EntityKind, name: str) -> tuple[UUID, bool]:
        """
        Insert the entity, tolerating a concurrent insert of the same name.

        Returns (id, created). A conflict on name means another writer got
        there first and its row is returned. A conflict on slug means the
        free slug we picked was taken in the meantime, so pick again; the
        last attempt stores no slug at all.
        """
        model = ENTITY_MODELS[kind]
        base_slug = slugify(name)
        last_error: Optional[IntegrityError] = None

        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            if attempt < MAX_INSERT_ATTEMPTS:
                slug = find_unique_slug(self.db, kind, base_slug, self.max_slug_attempts)
            else:
                slug = None

            stmt = (
                dialect_insert(self.db, model)
                .values(name=name, slug=slug)
                .on_conflict_do_nothing(index_elements=["name"])
                .returning(model.id)
            )
            try:
                with self.db.begin_nested():
                    new_id = self.db.execute(stmt).scalar_one_or_none()
            except IntegrityError as e:
                last_error = e
                logger.info(
                    "Slug %r for %s %r was taken concurrently (attempt %d)",
                    slug, kind.value, name, attempt,
                )
                existing = self._lookup_id(kind, name)
                if existing is not None:
                    self.db.commit()
                    return existing, False
                continue

            if new_id is None:
                # Name conflict: another writer inserted it between lookup and insert
                existing = self._lookup_id(kind, name)
                self.db.commit()
                if existing is None:
                    raise ResolutionFailed(kind, name, RuntimeError("conflicting row vanished"))
                logger.debug("%s %r created concurrently, reusing %s", kind.value, name, existing)
                return existing, False

            self.db.commit()
            logger.debug("Created %s %r (slug=%s, id=%s)", kind.value, name, slug, new_id)
            return new_id, True

        self.db.rollback()
        raise ResolutionFailed(kind, name, last_error)
