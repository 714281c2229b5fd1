"""
SQLAlchemy models for the readshelf database.

Only the entities the ingestion and navigation engine touches live here:
books, the currently-reading recency marker, and the key-value table that
backs the database cache.
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

FORMAT_PDF = 'pdf'
FORMAT_EPUB = 'epub'
SUPPORTED_FORMATS = (FORMAT_PDF, FORMAT_EPUB)


class Book(Base):
    """One uploaded PDF or EPUB file."""
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)  # Owner

    title = Column(String(500), nullable=False, index=True)
    author = Column(String(500), nullable=False, default='unknown')
    filename = Column(String(500), nullable=False)  # Normalized, e.g. My_Book.epub

    file_path = Column(String(1000), nullable=False)  # PDF file or EPUB package directory
    url = Column(String(1000), nullable=False)  # /book/<filename>
    cover = Column(String(1000), nullable=False, default='')  # Public URL, empty if none

    pages = Column(Integer, nullable=False, default=1)  # Always 1 for EPUB
    format = Column(String(10), nullable=False)

    uploaded_on = Column(DateTime, default=datetime.utcnow, nullable=False)

    reading = relationship(
        'CurrentlyReading', back_populates='book', uselist=False,
        cascade='all, delete-orphan', passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint('user_id', 'filename', name='uix_book_owner_filename'),
        CheckConstraint('pages >= 1', name='ck_book_pages'),
        CheckConstraint("format IN ('pdf', 'epub')", name='ck_book_format'),
        Index('idx_book_owner_id', 'user_id', 'id'),
    )

    @property
    def is_epub(self) -> bool:
        return self.format == FORMAT_EPUB

    def __repr__(self):
        return f"<Book(id={self.id}, filename='{self.filename}', format='{self.format}')>"


class CurrentlyReading(Base):
    """Recency marker for the "recently opened" shelf; one row per book."""
    __tablename__ = 'currently_reading'

    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), unique=True, nullable=False)
    user_id = Column(Integer, nullable=False)
    date_read = Column(DateTime, default=datetime.utcnow, nullable=False)

    book = relationship('Book', back_populates='reading')

    __table_args__ = (
        Index('idx_reading_owner_date', 'user_id', 'date_read'),
    )

    def __repr__(self):
        return f"<CurrentlyReading(book_id={self.book_id}, date_read={self.date_read})>"


class CacheEntry(Base):
    """Key-value row backing DatabaseCache."""
    __tablename__ = 'cache_entries'

    key = Column(String(1000), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<CacheEntry(key='{self.key}')>"
