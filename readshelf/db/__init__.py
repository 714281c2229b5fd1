"""
Database module for readshelf.

Provides SQLAlchemy session management and initialization.
"""

from .models import Base, Book, CurrentlyReading, CacheEntry, FORMAT_PDF, FORMAT_EPUB
from .session import get_session, init_db, close_db, session_scope

__all__ = [
    'Base',
    'Book',
    'CurrentlyReading',
    'CacheEntry',
    'FORMAT_PDF',
    'FORMAT_EPUB',
    'get_session',
    'init_db',
    'close_db',
    'session_scope',
]
