"""Tests for catalog reads and entity/book CRUD."""
import uuid
from datetime import date

import pytest
from sqlalchemy.orm import Session

from booknexus.core.errors import BookNotFound, EntityInUse, EntityNotFound
from booknexus.models import Author, Book, EntityKind, Publisher
from booknexus.services import catalog_service
from booknexus.services.catalog_service import BookSearch, split_tags


def test_split_tags():
    """Test tag splitting on both separators, lower-casing and de-duplication."""
    assert split_tags("Fantasy, dragons; QUESTS ;fantasy,,") == ["fantasy", "dragons", "quests"]
    assert split_tags("") == []
    assert split_tags(None) == []


def test_search_filters_sorts_and_pages(db: Session, make_author, make_book):
    """Test text search, author name filter, sort order and paging with total."""
    tolkien = make_author("J.R.R. Tolkien")
    le_guin = make_author("Ursula K. Le Guin")
    make_book("The Hobbit", tolkien, published_date=date(1937, 9, 21), genres="Fantasy")
    make_book("The Silmarillion", tolkien, published_date=date(1977, 9, 15), genres="Fantasy")
    make_book("A Wizard of Earthsea", le_guin, published_date=date(1968, 1, 1), genres="Fantasy")
    make_book("The Dispossessed", le_guin, published_date=date(1974, 5, 1), genres="Science Fiction")

    books, total = catalog_service.search_books(db, BookSearch(query="the"))
    assert total == 3
    assert [b.title for b in books] == ["The Dispossessed", "The Hobbit", "The Silmarillion"]

    books, total = catalog_service.search_books(db, BookSearch(author_name="tolkien", sort_by="date_desc"))
    assert total == 2
    assert [b.title for b in books] == ["The Silmarillion", "The Hobbit"]

    books, total = catalog_service.search_books(db, BookSearch(genre="fantasy", limit=2, offset=2))
    assert total == 3
    assert [b.title for b in books] == ["The Silmarillion"]

    books, _ = catalog_service.search_books(db, BookSearch(sort_by="author"))
    assert [b.title for b in books][:2] == ["The Hobbit", "The Silmarillion"]


def test_get_book_missing(db: Session):
    """Test that an unknown book id raises BookNotFound."""
    with pytest.raises(BookNotFound):
        catalog_service.get_book(db, uuid.uuid4())


def test_book_crud(db: Session, make_author):
    """Test create, partial update and delete of a book."""
    author = make_author("Crud Author")
    book = catalog_service.create_book(db, title="Draft", author_id=author.id, pages=100)

    updated = catalog_service.update_book(db, book.id, title="Final", tags="edited")
    assert updated.title == "Final"
    assert updated.pages == 100
    assert updated.tags == "edited"

    with pytest.raises(ValueError):
        catalog_service.update_book(db, book.id, rating=5)

    catalog_service.delete_book(db, book.id)
    with pytest.raises(BookNotFound):
        catalog_service.get_book(db, book.id)


def test_entity_lookup_by_slug(db: Session, make_publisher):
    """Test slug lookup and EntityNotFound for an unknown slug."""
    publisher = make_publisher("Tor Books")

    assert catalog_service.get_entity_by_slug(db, EntityKind.PUBLISHER, "tor-books").id == publisher.id
    with pytest.raises(EntityNotFound):
        catalog_service.get_entity_by_slug(db, EntityKind.PUBLISHER, "no-such-press")


def test_list_entities_search_and_total(db: Session, make_author):
    """Test name search and ordering when listing authors."""
    make_author("Brandon Sanderson")
    make_author("Brandon Mull")
    make_author("Robin Hobb")

    rows, total = catalog_service.list_entities(db, EntityKind.AUTHOR, search="brandon")

    assert total == 2
    assert [row.name for row in rows] == ["Brandon Mull", "Brandon Sanderson"]


def test_rename_rederives_unique_slug(db: Session, make_author):
    """Test that renaming an entity moves it to a free slug."""
    make_author("Iain Banks")
    author = make_author("Iain M Banks Draft")

    renamed = catalog_service.update_entity(db, EntityKind.AUTHOR, author.id, name="Iain Banks!")

    assert renamed.name == "Iain Banks!"
    assert renamed.slug == "iain-banks-1"


def test_update_entity_explicit_empty_slug_clears_it(db: Session, make_author):
    """Test that passing an empty slug stores NULL."""
    author = make_author("Slugged")

    updated = catalog_service.update_entity(db, EntityKind.AUTHOR, author.id, slug="", bio="Short bio")

    assert updated.slug is None
    assert updated.bio == "Short bio"


def test_delete_publisher_detaches_books(db: Session, make_author, make_publisher, make_book):
    """Test that deleting a publisher keeps its books with no publisher."""
    publisher = make_publisher("Gone Press")
    book = make_book("Still Here", make_author("Writer"), publisher_id=publisher.id)

    catalog_service.delete_entity(db, EntityKind.PUBLISHER, publisher.id)

    db.expire_all()
    assert db.get(Publisher, publisher.id) is None
    assert db.get(Book, book.id).publisher_id is None


def test_delete_series_clears_position(db: Session, make_author, make_series, make_book):
    """Test that deleting a series also clears the books' series position."""
    series = make_series("Ended Saga")
    book = make_book("Part One", make_author("Writer"), series_id=series.id, series_position=1)

    catalog_service.delete_entity(db, EntityKind.SERIES, series.id)

    db.expire_all()
    stored = db.get(Book, book.id)
    assert stored.series_id is None
    assert stored.series_position is None


def test_delete_author_with_books_is_refused(db: Session, make_author, make_book):
    """Test that an author referenced by books cannot be deleted."""
    author = make_author("Busy Author")
    make_book("Only Book", author)

    with pytest.raises(EntityInUse) as exc_info:
        catalog_service.delete_entity(db, EntityKind.AUTHOR, author.id)

    assert exc_info.value.book_count == 1
    assert db.get(Author, author.id) is not None


def test_delete_author_without_books(db: Session, make_author):
    """Test that an unreferenced author is deleted."""
    author = make_author("Idle Author")

    catalog_service.delete_entity(db, EntityKind.AUTHOR, author.id)

    with pytest.raises(EntityNotFound):
        catalog_service.get_entity(db, EntityKind.AUTHOR, author.id)


def test_books_for_series_in_reading_order(db: Session, make_author, make_series, make_book):
    """Test that series books list by position, unnumbered last."""
    author = make_author("Serial Writer")
    series = make_series("Trilogy")
    third = make_book("C Third", author, series_id=series.id, series_position=3)
    extra = make_book("A Novella", author, series_id=series.id)
    first = make_book("B First", author, series_id=series.id, series_position=1)

    books = catalog_service.books_for_entity(db, EntityKind.SERIES, series.id)

    assert [b.id for b in books] == [first.id, third.id, extra.id]
    assert catalog_service.entity_book_count(db, EntityKind.SERIES, series.id) == 3


def test_tag_scan_prefers_books_matching_more_tags(db: Session, make_author, make_book):
    """Test that the SQL scan orders candidates by how many tags they match."""
    author = make_author("Tagged")
    seed = make_book("Seed", author, tags="fantasy; dragons")
    for title in ("A One", "B Two", "C Three", "D Four"):
        make_book(title, author, tags="fantasy")
    best = make_book("Z Both", author, tags="dragons, fantasy")

    ranked = catalog_service.books_sharing_tags(db, seed.id, seed.tags, limit=1, scan_limit=1)

    assert [(book.id, overlap) for book, overlap in ranked] == [(best.id, 2)]


def test_tag_scan_loads_at_most_scan_limit_rows(db: Session, make_author, make_book):
    """Test that rows beyond the scan limit are never loaded, however many match."""
    author = make_author("Capped")
    seed = make_book("Seed", author, tags="art")
    make_book("A Kicks", author, tags="martial arts")
    make_book("B Blocks", author, tags="martial arts")
    exact = make_book("Z Canvas", author, tags="art")

    assert catalog_service.books_sharing_tags(db, seed.id, seed.tags, limit=2, scan_limit=2) == []

    ranked = catalog_service.books_sharing_tags(db, seed.id, seed.tags, limit=2, scan_limit=3)
    assert [book.id for book, _ in ranked] == [exact.id]


def test_tag_scan_limit_defaults_to_setting(db: Session, make_author, make_book, monkeypatch):
    """Test that RECOMMEND_TAG_SCAN_LIMIT bounds the scan when no limit is passed."""
    monkeypatch.setattr(catalog_service.settings, "RECOMMEND_TAG_SCAN_LIMIT", 1)
    author = make_author("Configured")
    seed = make_book("Seed", author, tags="art")
    make_book("A Kicks", author, tags="martial arts")
    make_book("Z Canvas", author, tags="art")

    assert catalog_service.books_sharing_tags(db, seed.id, seed.tags, limit=1) == []
