"""
Embedded search index on SQLite FTS5.

The index file is opened, used and closed around every operation; no
handle is kept between requests. Only whole-book documents are indexed,
so content-level search is unavailable in this mode.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import List
import logging
import re

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import IndexQueryError, IndexWriteError
from .base import BookDetail, BookInfo, IndexBackend, SearchResult

logger = logging.getLogger(__name__)

SEPARATOR = "*****"


def composite_id(doc: BookInfo) -> str:
    """Document id carrying every displayed field, each followed by the separator."""
    fields = [doc.owner_id, doc.book_id, doc.title, doc.author, doc.cover, doc.url]
    return "".join(f"{value}{SEPARATOR}" for value in fields)


def composite_prefix(owner_id: int, book_id: int) -> str:
    return f"{owner_id}{SEPARATOR}{book_id}{SEPARATOR}"


def parse_composite_id(doc_id: str) -> BookInfo:
    """
    Rebuild a BookInfo from a composite id.

    Raises:
        ValueError: doc_id does not have the six separated fields
    """
    parts = doc_id.split(SEPARATOR)
    if len(parts) < 6:
        raise ValueError(f"Malformed composite id: {doc_id!r}")
    return BookInfo(
        owner_id=int(parts[0]),
        book_id=int(parts[1]),
        title=parts[2],
        author=parts[3],
        cover=parts[4],
        url=parts[5],
    )


def build_match_query(term: str) -> str:
    """Turn free text into an FTS5 query: any word, prefix-matched."""
    words = re.findall(r"\w+", term, re.UNICODE)
    return " OR ".join(f'"{word}"*' for word in words)


class LocalIndexBackend(IndexBackend):
    """SQLite FTS5 index stored in a single file."""

    def __init__(self, index_path: Path):
        self.index_path = Path(index_path)
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        with self._open() as conn:
            conn.execute(text("""
                CREATE VIRTUAL TABLE IF NOT EXISTS book_info USING fts5(
                    doc_id UNINDEXED,
                    title,
                    author,
                    tokenize='porter unicode61'
                )
            """))

    @property
    def name(self) -> str:
        return "local"

    @property
    def supports_detail_search(self) -> bool:
        return False

    @contextmanager
    def _open(self):
        engine = create_engine(f"sqlite:///{self.index_path}")
        try:
            with engine.begin() as conn:
                yield conn
        finally:
            engine.dispose()

    def _delete_book(self, conn, owner_id: int, book_id: int) -> None:
        prefix = composite_prefix(owner_id, book_id)
        conn.execute(
            text("DELETE FROM book_info WHERE substr(doc_id, 1, length(:prefix)) = :prefix"),
            {"prefix": prefix}
        )

    def index_info(self, doc: BookInfo) -> None:
        try:
            with self._open() as conn:
                # The id embeds title/author, so an edit would otherwise leave
                # the old document behind.
                self._delete_book(conn, doc.owner_id, doc.book_id)
                conn.execute(
                    text("INSERT INTO book_info (doc_id, title, author) VALUES (:doc_id, :title, :author)"),
                    {"doc_id": composite_id(doc), "title": doc.title, "author": doc.author}
                )
        except SQLAlchemyError as e:
            raise IndexWriteError(f"Local index write failed for {doc.doc_id}: {e}")
        logger.debug(f"Indexed {doc.doc_id} locally")

    def update_info(self, doc: BookInfo) -> None:
        self.index_info(doc)

    def delete_info(self, owner_id: int, book_id: int) -> None:
        try:
            with self._open() as conn:
                self._delete_book(conn, owner_id, book_id)
        except SQLAlchemyError as e:
            raise IndexWriteError(f"Local index delete failed for {owner_id}_{book_id}: {e}")

    def index_detail(self, doc: BookDetail) -> None:
        logger.debug(f"Local index ignores detail document {doc.doc_id}")

    def update_detail(self, info: BookInfo, page: int) -> None:
        pass

    def delete_detail(self, owner_id: int, book_id: int, page: int) -> None:
        pass

    def query(self, term: str, limit: int = 50) -> SearchResult:
        match = build_match_query(term)
        if not match:
            return SearchResult()

        try:
            with self._open() as conn:
                rows = conn.execute(
                    text("""
                    SELECT doc_id FROM book_info
                    WHERE book_info MATCH :query
                    ORDER BY rank
                    LIMIT :limit
                    """),
                    {"query": match, "limit": limit}
                ).fetchall()
        except SQLAlchemyError as e:
            raise IndexQueryError(f"Local index query failed: {e}")

        hits: List[BookInfo] = []
        for (doc_id,) in rows:
            try:
                hits.append(parse_composite_id(doc_id))
            except ValueError as e:
                logger.warning(f"Skipping unparseable index entry: {e}")

        return SearchResult(book_info=hits, book_detail=[])
