"""Pytest configuration for backend tests."""
import csv
import io
import os
import sys
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# TEST_DATABASE_URL may point at a Postgres test database; defaults to in-memory SQLite.
# Never point it at a database holding real data: every test table is dropped at the end.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")

# Settings refuse to load without a database; give the app module something harmless
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)

from booknexus.database import Base, enable_sqlite_savepoints  # noqa: E402
import booknexus.models  # noqa: E402,F401
from booknexus.models import Author, Book, Publisher, Series  # noqa: E402
from booknexus.utils.slug import slugify  # noqa: E402


FULL_HEADER = [
    "title",
    "subtitle",
    "author",
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
]


def build_csv(rows: list[dict], header: Optional[list[str]] = None) -> io.BytesIO:
    """Build an in-memory CSV byte stream; missing keys are written as empty cells."""
    header = header or FULL_HEADER
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    for row in rows:
        writer.writerow([row.get(name, "") for name in header])
    return io.BytesIO(buffer.getvalue().encode("utf-8"))


@pytest.fixture(scope="session")
def engine():
    """
    Create a test database engine with all tables.

    In-memory SQLite uses a single shared connection (StaticPool) so the
    API tests, which run handlers in a worker thread, see the same data.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        test_engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        enable_sqlite_savepoints(test_engine)
    else:
        test_engine = create_engine(TEST_DATABASE_URL, pool_pre_ping=True)

    if not Base.metadata.tables:
        raise RuntimeError(
            "No tables registered in Base.metadata. "
            "Did you import booknexus.models? All model classes must be imported before create_all()."
        )

    Base.metadata.create_all(bind=test_engine)

    yield test_engine

    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Session:
    """
    Create a database session for each test.

    The whole test runs inside one outer transaction that is rolled back at
    the end. The session works in savepoints, so code under test can commit
    and roll back per row exactly as it does in production.
    """
    connection = engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def client(db: Session):
    """FastAPI test client whose requests use the test session."""
    from fastapi.testclient import TestClient
    from booknexus.main import app
    from booknexus.database import get_db

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def make_author(db: Session):
    def _make(name: str, slug: Optional[str] = None, **fields) -> Author:
        author = Author(name=name, slug=slug if slug is not None else (slugify(name) or None), **fields)
        db.add(author)
        db.commit()
        db.refresh(author)
        return author
    return _make


@pytest.fixture
def make_publisher(db: Session):
    def _make(name: str, **fields) -> Publisher:
        publisher = Publisher(name=name, slug=slugify(name) or None, **fields)
        db.add(publisher)
        db.commit()
        db.refresh(publisher)
        return publisher
    return _make


@pytest.fixture
def make_series(db: Session):
    def _make(name: str, **fields) -> Series:
        series = Series(name=name, slug=slugify(name) or None, **fields)
        db.add(series)
        db.commit()
        db.refresh(series)
        return series
    return _make


@pytest.fixture
def make_book(db: Session):
    def _make(title: str, author: Author, **fields) -> Book:
        book = Book(title=title, author_id=author.id, **fields)
        db.add(book)
        db.commit()
        db.refresh(book)
        return book
    return _make


@pytest.fixture
def make_csv():
    """Factory for CSV byte streams with the full import header by default."""
    return build_csv
