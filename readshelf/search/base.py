"""
Base search index interface.

Defines the documents written to a search index and the abstract backend
that the embedded and remote implementations share. Callers only ever see
BookInfo / BookDetailHit shaped results and a detail-search capability flag.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Tuple


def info_doc_id(owner_id: int, book_id: int) -> str:
    """Identity of a BookInfo document: {owner}_{book}."""
    return f"{owner_id}_{book_id}"


def detail_doc_id(owner_id: int, book_id: int, page: int) -> str:
    """Identity of a BookDetail document: {owner}_{book}_{page}."""
    return f"{owner_id}_{book_id}_{page}"


def parse_doc_id(doc_id: str) -> Tuple[int, ...]:
    """
    Split an info or detail identity back into integers.

    Raises:
        ValueError: doc_id is not made of underscore-separated integers
    """
    parts = doc_id.split("_")
    if len(parts) not in (2, 3):
        raise ValueError(f"Not an index document id: {doc_id!r}")
    return tuple(int(part) for part in parts)


@dataclass
class BookInfo:
    """Whole-book search document."""
    owner_id: int
    book_id: int
    title: str
    author: str
    cover: str = ""
    url: str = ""

    @property
    def doc_id(self) -> str:
        return info_doc_id(self.owner_id, self.book_id)

    def to_source(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookDetail:
    """One PDF page or EPUB spine entry, content base64 encoded."""
    owner_id: int
    book_id: int
    page: int
    data: str
    title: str
    author: str
    url: str = ""
    cover: str = ""
    format: str = ""
    se_url: str = ""  # Fragment href for EPUB, empty for PDF

    @property
    def doc_id(self) -> str:
        return detail_doc_id(self.owner_id, self.book_id, self.page)

    def to_source(self) -> Dict[str, Any]:
        source = asdict(self)
        source["thedata"] = source.pop("data")
        return source


@dataclass
class BookDetailHit:
    """A page-level search hit with highlighted snippets."""
    owner_id: int
    book_id: int
    page: int
    title: str
    author: str
    url: str = ""
    cover: str = ""
    format: str = ""
    se_url: str = ""
    highlights: List[str] = field(default_factory=list)


@dataclass
class SearchResult:
    """Combined result of a search across both document kinds."""
    book_info: List[BookInfo] = field(default_factory=list)
    book_detail: List[BookDetailHit] = field(default_factory=list)

    def for_owner(self, owner_id: int) -> 'SearchResult':
        """Keep only hits belonging to owner_id."""
        return SearchResult(
            book_info=[hit for hit in self.book_info if hit.owner_id == owner_id],
            book_detail=[hit for hit in self.book_detail if hit.owner_id == owner_id],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book_info": [asdict(hit) for hit in self.book_info],
            "book_detail": [asdict(hit) for hit in self.book_detail],
        }


class IndexBackend(ABC):
    """
    Abstract search index backend.

    Writes raise IndexWriteError, queries raise IndexQueryError. Re-indexing
    a document with the same identity replaces it.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name (e.g., 'local', 'remote')."""
        pass

    @property
    @abstractmethod
    def supports_detail_search(self) -> bool:
        """Whether page/fragment content can be searched."""
        pass

    @abstractmethod
    def index_info(self, doc: BookInfo) -> None:
        pass

    @abstractmethod
    def update_info(self, doc: BookInfo) -> None:
        """Replace title/author/cover of an existing info document."""
        pass

    @abstractmethod
    def delete_info(self, owner_id: int, book_id: int) -> None:
        pass

    @abstractmethod
    def index_detail(self, doc: BookDetail) -> None:
        pass

    @abstractmethod
    def update_detail(self, info: BookInfo, page: int) -> None:
        """Copy title/author/cover from info onto one detail document."""
        pass

    @abstractmethod
    def delete_detail(self, owner_id: int, book_id: int, page: int) -> None:
        pass

    @abstractmethod
    def query(self, term: str, limit: int = 50) -> SearchResult:
        pass

    def close(self) -> None:
        """Release held resources."""
        pass
