"""
Backend-agnostic search index facade.

Holds exactly one IndexBackend, chosen at construction, and adds the
book-level operations (update or delete every document of a book) that
edit and delete flows need. Book-level operations are best effort: a
failed document is logged and the rest still run.
"""

from typing import Iterable
import logging

from ..db.models import FORMAT_PDF
from ..exceptions import IndexWriteError
from .base import BookDetail, BookInfo, IndexBackend, SearchResult

logger = logging.getLogger(__name__)


def detail_page_indices(book_format: str, total: int) -> range:
    """Detail page numbers of a book: 1..n for PDF pages, 0..n-1 for EPUB spine entries."""
    if book_format == FORMAT_PDF:
        return range(1, total + 1)
    return range(0, total)


class SearchIndexAdapter:
    """Single entry point for index writes and queries."""

    def __init__(self, backend: IndexBackend):
        self.backend = backend

    @property
    def detail_search_available(self) -> bool:
        return self.backend.supports_detail_search

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def index_info(self, doc: BookInfo) -> None:
        self.backend.index_info(doc)

    def index_detail(self, doc: BookDetail) -> None:
        self.backend.index_detail(doc)

    def delete_info(self, owner_id: int, book_id: int) -> None:
        self.backend.delete_info(owner_id, book_id)

    def delete_detail(self, owner_id: int, book_id: int, page: int) -> None:
        self.backend.delete_detail(owner_id, book_id, page)

    def query(self, term: str, limit: int = 50) -> SearchResult:
        return self.backend.query(term, limit=limit)

    def update_book(self, info: BookInfo, pages: Iterable[int]) -> int:
        """
        Push edited metadata to the info document and every detail document.

        Returns:
            Number of documents that failed to update
        """
        failures = 0
        try:
            self.backend.update_info(info)
        except IndexWriteError as e:
            logger.error(f"Failed to update {info.doc_id}: {e}")
            failures += 1

        if not self.detail_search_available:
            return failures

        for page in pages:
            try:
                self.backend.update_detail(info, page)
            except IndexWriteError as e:
                logger.warning(f"Failed to update page {page} of {info.doc_id}: {e}")
                failures += 1
        return failures

    def delete_book(self, owner_id: int, book_id: int, pages: Iterable[int]) -> int:
        """
        Remove the info document and every detail document of a book.

        Returns:
            Number of documents that failed to delete
        """
        failures = 0
        try:
            self.backend.delete_info(owner_id, book_id)
        except IndexWriteError as e:
            logger.error(f"Failed to delete index entry {owner_id}_{book_id}: {e}")
            failures += 1

        if not self.detail_search_available:
            return failures

        for page in pages:
            try:
                self.backend.delete_detail(owner_id, book_id, page)
            except IndexWriteError as e:
                logger.warning(f"Failed to delete page {page} of {owner_id}_{book_id}: {e}")
                failures += 1
        return failures

    def close(self) -> None:
        self.backend.close()
