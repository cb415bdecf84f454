from sqlalchemy import Column, String, Integer, Text, Date, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from booknexus.database import Base


class EntityKind(str, enum.Enum):
    AUTHOR = "author"
    PUBLISHER = "publisher"
    SERIES = "series"


class Author(Base):
    __tablename__ = "authors"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    slug = Column(String, unique=True, nullable=True)  # NULL when the name has no alphanumerics
    bio = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    books = relationship("Book", back_populates="author")


class Publisher(Base):
    __tablename__ = "publishers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    slug = Column(String, unique=True, nullable=True)
    website = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    books = relationship("Book", back_populates="publisher")


class Series(Base):
    __tablename__ = "series"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    slug = Column(String, unique=True, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    books = relationship("Book", back_populates="series")


class Book(Base):
    __tablename__ = "books"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    subtitle = Column(String, nullable=True)
    author_id = Column(Uuid(as_uuid=True), ForeignKey("authors.id"), nullable=False, index=True)
    publisher_id = Column(Uuid(as_uuid=True), ForeignKey("publishers.id"), nullable=True, index=True)
    published_date = Column(Date, nullable=True)
    isbn10 = Column(String, nullable=True)
    isbn13 = Column(String, unique=True, nullable=True)
    pages = Column(Integer, nullable=True)
    language = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    series_id = Column(Uuid(as_uuid=True), ForeignKey("series.id"), nullable=True, index=True)
    series_position = Column(Integer, nullable=True)
    genres = Column(Text, nullable=True)  # freeform genre string
    tags = Column(Text, nullable=True)  # comma/semicolon-delimited tag list
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    author = relationship("Author", back_populates="books")
    publisher = relationship("Publisher", back_populates="books")
    series = relationship("Series", back_populates="books")


ENTITY_MODELS = {
    EntityKind.AUTHOR: Author,
    EntityKind.PUBLISHER: Publisher,
    EntityKind.SERIES: Series,
}

# Book column holding the reference to each entity kind
BOOK_REFERENCE_COLUMNS = {
    EntityKind.AUTHOR: Book.author_id,
    EntityKind.PUBLISHER: Book.publisher_id,
    EntityKind.SERIES: Book.series_id,
}
