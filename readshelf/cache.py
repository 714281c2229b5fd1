"""
Key-value cache for parsed EPUB packages and reading positions.

Entries are addressed by a typed key (owner, filename, field) and mapped to
flat storage keys that keep the historical suffix convention, e.g.
``"1:My_Book.epub...current_page..."``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
import logging
import threading

from sqlalchemy.orm import Session

from .db.models import CacheEntry

logger = logging.getLogger(__name__)


class CacheField(Enum):
    """Per-book values kept in the cache, mapped to their key suffix."""
    PACKAGE = ""
    CURRENT_PAGE = "...current_page..."
    CURRENT_FRAGMENT = "...current_fragment..."
    PACKAGE_PATH = "...filepath..."
    TOTAL_PAGES = "...total_pages..."


@dataclass(frozen=True)
class CacheKey:
    """Typed cache key: book identity plus field."""
    owner_id: int
    filename: str
    field: CacheField = CacheField.PACKAGE

    @property
    def storage_key(self) -> str:
        return f"{self.owner_id}:{self.filename}{self.field.value}"


class KeyValueCache(ABC):
    """Minimal string cache; entries never expire."""

    @abstractmethod
    def get(self, key: CacheKey) -> Optional[str]:
        """Return the stored value or None on a miss."""
        pass

    @abstractmethod
    def set(self, key: CacheKey, value) -> None:
        """Store value (converted to str) under key."""
        pass

    @abstractmethod
    def delete(self, key: CacheKey) -> None:
        """Remove key if present."""
        pass

    def get_int(self, key: CacheKey, default: Optional[int] = None) -> Optional[int]:
        """Read an integer counter, returning default on a miss or bad value."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Non-integer cache value for {key.storage_key}: {raw!r}")
            return default

    def delete_book(self, owner_id: int, filename: str) -> None:
        """Drop every field cached for one book."""
        for field in CacheField:
            self.delete(CacheKey(owner_id, filename, field))


class MemoryCache(KeyValueCache):
    """Process-local cache, lost on restart."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[str]:
        with self._lock:
            return self._data.get(key.storage_key)

    def set(self, key: CacheKey, value) -> None:
        with self._lock:
            self._data[key.storage_key] = str(value)

    def delete(self, key: CacheKey) -> None:
        with self._lock:
            self._data.pop(key.storage_key, None)


class DatabaseCache(KeyValueCache):
    """Cache persisted in the cache_entries table of the library database."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, key: CacheKey) -> Optional[str]:
        entry = self.session.get(CacheEntry, key.storage_key)
        return entry.value if entry else None

    def set(self, key: CacheKey, value) -> None:
        self.session.merge(CacheEntry(key=key.storage_key, value=str(value)))
        self.session.commit()

    def delete(self, key: CacheKey) -> None:
        entry = self.session.get(CacheEntry, key.storage_key)
        if entry:
            self.session.delete(entry)
            self.session.commit()


def create_cache(backend: str, session: Optional[Session] = None) -> KeyValueCache:
    """
    Build the configured cache.

    Args:
        backend: "database" or "memory"
        session: Required for the database backend

    Returns:
        KeyValueCache instance
    """
    if backend == "memory":
        return MemoryCache()
    if backend == "database":
        if session is None:
            raise ValueError("Database cache requires a session")
        return DatabaseCache(session)
    raise ValueError(f"Unknown cache backend: {backend}")
