"""
Bulk CSV import of the book catalog.

The source is a denormalized CSV (one row per book, author/publisher/series
given by name). Rows are streamed one at a time: each row's names are
resolved to entity ids through an EntityResolver, then the book is inserted
with ON CONFLICT (isbn13) DO NOTHING. Every write commits on its own, so an
interrupted run keeps its progress and re-running the same file inserts
nothing new.

Column order does not matter; columns are looked up by header name. Only
`title` and `author` are required in the header. Missing optional columns
read as empty, extra columns are ignored.
"""
import csv
import io
import logging
import re
import threading
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from pathlib import Path
from typing import BinaryIO, Optional, TextIO, Union
from uuid import UUID

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from booknexus.core.config import settings
from booknexus.core.errors import MalformedInput, ResolutionFailed, RowSkipped
from booknexus.database import dialect_insert
from booknexus.models import Book, EntityKind
from booknexus.services.entity_resolver import EntityResolver, ResolutionCache
from booknexus.utils.timing import now_ms

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("title", "author")

OPTIONAL_COLUMNS = (
    "subtitle",
    "publisher",
    "publishedDate",
    "isbn10",
    "isbn13",
    "pages",
    "language",
    "description",
    "series_name",
    "series_position",
    "genres",
    "tags",
    "image_url",
)

# Spreadsheet exports turn integers into floats ("312.0")
FLOAT_ARTIFACT_COLUMNS = ("isbn10", "isbn13", "pages", "series_position")

DATE_FORMAT = "%Y-%m-%d"
DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


@dataclass
class IngestReport:
    inserted: int = 0
    skipped: int = 0
    created_authors: int = 0
    created_publishers: int = 0
    created_series: int = 0
    # subset of skipped: rows whose isbn13 was already stored
    duplicates: int = 0
    rows: int = 0
    cancelled: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class BookRow:
    """One import row after trimming and field parsing. Absent values are None."""
    line: int
    title: Optional[str]
    author: Optional[str]
    subtitle: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[date] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    description: Optional[str] = None
    series_name: Optional[str] = None
    series_position: Optional[int] = None
    genres: Optional[str] = None
    tags: Optional[str] = None
    image_url: Optional[str] = None
    raw: dict = field(default_factory=dict, repr=False)


def strip_float_suffix(value: str) -> str:
    """'312.0' -> '312'. Only a single trailing '.0' is removed."""
    if value.endswith(".0"):
        return value[:-2]
    return value


def parse_date(value: str) -> Optional[date]:
    """Parse YYYY-MM-DD; anything else is treated as absent."""
    if not value or not DATE_PATTERN.fullmatch(value):
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return None


def parse_positive_int(value: str) -> Optional[int]:
    """Parse a positive integer of plain ASCII digits; zero, signs and anything else are absent."""
    if not (value.isascii() and value.isdigit()):
        return None
    number = int(value)
    return number if number > 0 else None


def _none_if_empty(value: str) -> Optional[str]:
    return value or None


def parse_row(record: dict[str, str], line: int) -> BookRow:
    """
    Normalize one header-keyed record.

    Each optional field parses independently: a bad date or page count only
    drops that field, never the row.
    """
    values = {name: (record.get(name) or "").strip() for name in REQUIRED_COLUMNS + OPTIONAL_COLUMNS}
    for name in FLOAT_ARTIFACT_COLUMNS:
        values[name] = strip_float_suffix(values[name])

    return BookRow(
        line=line,
        title=_none_if_empty(values["title"]),
        author=_none_if_empty(values["author"]),
        subtitle=_none_if_empty(values["subtitle"]),
        publisher=_none_if_empty(values["publisher"]),
        published_date=parse_date(values["publishedDate"]),
        isbn10=_none_if_empty(values["isbn10"]),
        isbn13=_none_if_empty(values["isbn13"]),
        pages=parse_positive_int(values["pages"]),
        language=_none_if_empty(values["language"]),
        description=_none_if_empty(values["description"]),
        series_name=_none_if_empty(values["series_name"]),
        series_position=parse_positive_int(values["series_position"]),
        genres=_none_if_empty(values["genres"]),
        tags=_none_if_empty(values["tags"]),
        image_url=_none_if_empty(values["image_url"]),
        raw=record,
    )


def _text_stream(source: Union[BinaryIO, TextIO]) -> TextIO:
    if isinstance(source, io.TextIOBase):
        return source
    # utf-8-sig swallows a BOM left by spreadsheet exports; undecodable bytes
    # become U+FFFD in their own field instead of failing the whole read
    return io.TextIOWrapper(source, encoding="utf-8-sig", errors="replace", newline="")


def _is_connection_failure(exc: BaseException) -> bool:
    """True when the error means the database connection itself is gone."""
    if isinstance(exc, ResolutionFailed) and exc.cause is not None:
        exc = exc.cause
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class CsvBookReader:
    """
    Streams BookRows from a CSV source.

    Quoting is lenient (stray quotes inside fields are kept). Rows shorter than
    the header and rows the csv module cannot parse surface as RowSkipped.
    Binary input that is not valid UTF-8 is decoded with replacement characters.
    """

    def __init__(self, source: Union[BinaryIO, TextIO]):
        self._reader = csv.reader(_text_stream(source), skipinitialspace=True, strict=False)
        try:
            header = next(self._reader)
        except StopIteration:
            raise MalformedInput("CSV source is empty: missing header row")
        except (csv.Error, UnicodeDecodeError, OSError) as e:
            raise MalformedInput(f"Failed to read CSV header: {e}") from e

        self.header = [name.strip() for name in header]
        missing = [name for name in REQUIRED_COLUMNS if name not in self.header]
        if missing:
            raise MalformedInput(f"CSV header is missing required columns: {', '.join(missing)}")

        self.columns: dict[str, int] = {}
        for index, name in enumerate(self.header):
            self.columns.setdefault(name, index)

    def __iter__(self):
        while True:
            line = self._reader.line_num + 1
            try:
                row = next(self._reader)
            except StopIteration:
                return
            except csv.Error as e:
                yield RowSkipped(line, f"unparseable row: {e}")
                continue
            except (UnicodeDecodeError, OSError) as e:
                raise MalformedInput(f"Failed to read CSV source near line {line}: {e}") from e

            if not row or all(not cell.strip() for cell in row):
                continue
            line = self._reader.line_num
            if len(row) < len(self.header):
                yield RowSkipped(line, f"expected {len(self.header)} columns, got {len(row)}")
                continue

            record = {name: row[index] for name, index in self.columns.items()}
            yield parse_row(record, line)


def _insert_book(
    db: Session,
    row: BookRow,
    author_id: UUID,
    publisher_id: Optional[UUID],
    series_id: Optional[UUID],
) -> Optional[UUID]:
    """Insert one book; returns None when a book with the same isbn13 already exists."""
    stmt = (
        dialect_insert(db, Book)
        .values(
            title=row.title,
            subtitle=row.subtitle,
            author_id=author_id,
            publisher_id=publisher_id,
            published_date=row.published_date,
            isbn10=row.isbn10,
            isbn13=row.isbn13,
            pages=row.pages,
            language=row.language,
            description=row.description,
            series_id=series_id,
            series_position=row.series_position,
            genres=row.genres,
            tags=row.tags,
            image_url=row.image_url,
        )
        .on_conflict_do_nothing(index_elements=["isbn13"])
        .returning(Book.id)
    )
    return db.execute(stmt).scalar_one_or_none()


def _resolve_optional(resolver: EntityResolver, kind: EntityKind, name: Optional[str], line: int) -> Optional[UUID]:
    if not name:
        return None
    try:
        return resolver.resolve(kind, name)
    except ResolutionFailed as e:
        if _is_connection_failure(e):
            raise
        logger.warning("line %d: %s unresolved, inserting book without it: %s", line, kind.value, e)
        return None


def ingest(
    db: Session,
    source: Union[BinaryIO, TextIO],
    cache: Optional[ResolutionCache] = None,
    cancel_event: Optional[threading.Event] = None,
) -> IngestReport:
    """
    Import books from a CSV stream.

    Args:
        db: Database session; committed after every entity and book insert
        source: Binary (UTF-8) or text stream with a header row
        cache: Resolution cache for this run (a fresh one when omitted)
        cancel_event: When set, the run stops before the next row

    Returns:
        IngestReport with inserted/skipped counts and entities created

    Raises:
        MalformedInput: missing header/required columns, or unreadable source
        DBAPIError: the database connection was lost
    """
    cache = cache if cache is not None else ResolutionCache()
    resolver = EntityResolver(db, cache)
    created_before = dict(cache.created)
    report = IngestReport()

    reader = CsvBookReader(source)
    logger.info("Ingest started: columns=%s", reader.header)

    t0 = now_ms()
    progress_every = max(settings.INGEST_PROGRESS_EVERY, 1)

    for item in reader:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Ingest cancelled after %d rows", report.rows)
            report.cancelled = True
            break

        report.rows += 1
        if report.rows % progress_every == 0:
            logger.info(
                "Ingest progress: rows=%d inserted=%d skipped=%d elapsed=%.0fms",
                report.rows, report.inserted, report.skipped, now_ms() - t0,
            )

        if isinstance(item, RowSkipped):
            logger.warning("Skipping row: %s", item)
            report.skipped += 1
            continue

        row = item
        if not row.title or not row.author:
            logger.warning("Skipping row: line %d: missing title or author", row.line)
            report.skipped += 1
            continue

        try:
            author_id = resolver.resolve(EntityKind.AUTHOR, row.author)
        except ResolutionFailed as e:
            if _is_connection_failure(e):
                raise
            logger.warning("Skipping row: line %d: %s", row.line, e)
            report.skipped += 1
            continue

        publisher_id = _resolve_optional(resolver, EntityKind.PUBLISHER, row.publisher, row.line)
        series_id = _resolve_optional(resolver, EntityKind.SERIES, row.series_name, row.line)

        try:
            book_id = _insert_book(db, row, author_id, publisher_id, series_id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            if _is_connection_failure(e):
                raise
            logger.warning("Skipping row: line %d: failed to insert book %r: %s", row.line, row.title, e)
            report.skipped += 1
            continue

        if book_id is None:
            logger.info("line %d: isbn13 %s already stored, skipping %r", row.line, row.isbn13, row.title)
            report.skipped += 1
            report.duplicates += 1
        else:
            report.inserted += 1

    report.created_authors = cache.created[EntityKind.AUTHOR] - created_before.get(EntityKind.AUTHOR, 0)
    report.created_publishers = cache.created[EntityKind.PUBLISHER] - created_before.get(EntityKind.PUBLISHER, 0)
    report.created_series = cache.created[EntityKind.SERIES] - created_before.get(EntityKind.SERIES, 0)

    logger.info(
        "Ingest completed in %.0fms: %d books inserted, %d skipped (%d duplicate isbn13); "
        "created %d authors, %d publishers, %d series",
        now_ms() - t0, report.inserted, report.skipped, report.duplicates,
        report.created_authors, report.created_publishers, report.created_series,
    )
    return report


def ingest_file(
    db: Session,
    path: Union[str, Path],
    cache: Optional[ResolutionCache] = None,
    cancel_event: Optional[threading.Event] = None,
) -> IngestReport:
    """Open `path` and ingest it. An unopenable file is MalformedInput."""
    path = Path(path)
    try:
        handle = path.open("rb")
    except OSError as e:
        raise MalformedInput(f"Failed to open CSV file {path}: {e}") from e

    logger.info("Ingesting books from %s", path)
    with handle:
        return ingest(db, handle, cache=cache, cancel_event=cancel_event)
