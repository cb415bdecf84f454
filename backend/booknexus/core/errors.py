"""
Exceptions raised by the catalog core.

Ingestion distinguishes run-level failures (MalformedInput, connection loss),
which abort the run, from row-level ones, which are counted and skipped.
"""
from typing import Any, Optional


class CatalogError(Exception):
    """Base class for catalog errors."""


class MalformedInput(CatalogError):
    """The import source cannot be read as a catalog CSV (missing header, unreadable file)."""


class RowSkipped(CatalogError):
    """A single import row was rejected. Counted by the pipeline, never raised out of it."""

    def __init__(self, line: int, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"line {line}: {reason}")


class ResolutionFailed(CatalogError):
    """An author/publisher/series name could not be turned into an id."""

    def __init__(self, kind: Any, name: str, cause: Optional[BaseException] = None):
        self.kind = kind
        self.name = name
        self.cause = cause
        kind_label = getattr(kind, "value", kind)
        super().__init__(f"could not resolve {kind_label} {name!r}: {cause!r}")


class NotFound(CatalogError):
    """A requested row does not exist."""


class BookNotFound(NotFound):
    def __init__(self, book_id: Any):
        self.book_id = book_id
        super().__init__(f"book {book_id} not found")


class EntityNotFound(NotFound):
    def __init__(self, kind: Any, key: Any):
        self.kind = kind
        self.key = key
        super().__init__(f"{getattr(kind, 'value', kind)} {key} not found")


class EntityInUse(CatalogError):
    """Deleting the entity would orphan required references."""

    def __init__(self, kind: Any, key: Any, book_count: int):
        self.kind = kind
        self.key = key
        self.book_count = book_count
        super().__init__(f"{getattr(kind, 'value', kind)} {key} still has {book_count} books")
