"""
Library facade for readshelf.

Wires configuration, database session, cache, external tools, search index
and background tasks together, and exposes the operations the web server
and CLI call.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Tuple
import logging
import shutil

from sqlalchemy import func
from sqlalchemy.orm import Session

from .cache import create_cache, KeyValueCache
from .config import ReadShelfConfig
from .db.models import Book, CurrentlyReading, FORMAT_EPUB
from .db.session import init_db, get_session, close_db
from .exceptions import BookNotFoundError, DuplicateBookError, IngestionError, ToolExecutionError
from .pagination import LibraryPage, build_library_page, page_offset
from .search import SearchIndexAdapter, SearchResult, create_backend, detail_page_indices
from .search.base import BookInfo, IndexBackend
from .services.epub_package import EPUBPackageResolver
from .services.ingestion import IngestionPipeline
from .services.navigation import CurrentPageData, HrefData, NavigationStateMachine
from .services.tasks import TaskRunner
from .services.tools import ExternalToolRunner

logger = logging.getLogger(__name__)


@dataclass
class OpenedBook:
    """A book as handed to the viewer."""
    book: Book
    position: Optional[HrefData] = None  # EPUB only
    total_pages: int = 0


@dataclass
class HomeView:
    """Recently opened books plus the first listing page."""
    currently_reading: List[Book] = field(default_factory=list)
    page: Optional[LibraryPage] = None


class Library:
    """
    Per-installation library of uploaded PDF and EPUB books.

    Usage:
        lib = Library.open(load_config())
        with open("book.epub", "rb") as f:
            book_id = lib.ingest(1, f, "book.epub", "application/epub+zip")
        position = lib.epub_fragment_by_id(1, "book.epub", 2)
        lib.close()
    """

    def __init__(
        self,
        config: ReadShelfConfig,
        session: Session,
        runner: Optional[ExternalToolRunner] = None,
        backend: Optional[IndexBackend] = None,
        tasks: Optional[TaskRunner] = None,
        cache: Optional[KeyValueCache] = None,
    ):
        self.config = config
        self.session = session
        self.cache = cache or create_cache(config.cache.backend, session)
        self.runner = runner or ExternalToolRunner(config.tools)
        self.index = SearchIndexAdapter(backend or create_backend(config))
        self.tasks = tasks or TaskRunner(config.tasks.max_workers, config.tasks.synchronous)

        self.resolver = EPUBPackageResolver(
            self.runner, self.cache,
            config.storage.upload_root, config.storage.public_upload_prefix
        )
        self.navigation = NavigationStateMachine(self.cache)
        self.ingestion = IngestionPipeline(
            config, session, self.runner, self.resolver, self.index, self.cache, self.tasks
        )

    @classmethod
    def open(cls, config: ReadShelfConfig, echo: bool = False, **components) -> 'Library':
        """
        Open or create the library described by config.

        Args:
            config: Installation configuration
            echo: If True, log all SQL statements
            components: Optional runner/backend/tasks/cache overrides

        Returns:
            Library instance
        """
        init_db(config.storage.library_root, echo=echo)
        session = get_session()

        library = cls(config, session, **components)
        logger.info(f"Opened library at {config.storage.library_root} "
                    f"(index: {library.index.backend_name})")
        return library

    def close(self):
        """Stop background work and release the database and index."""
        self.tasks.shutdown(wait=False)
        self.index.close()
        if self.session:
            self.session.close()
        close_db()
        logger.info("Closed library")

    # Books

    def ingest(self, owner_id: int, stream: BinaryIO, filename: str, content_type: str) -> int:
        """Ingest one upload; see IngestionPipeline.ingest."""
        return self.ingestion.ingest(owner_id, stream, filename, content_type)

    def upload(self, owner_id: int, files: Iterable[Tuple[BinaryIO, str, str]]) -> str:
        """
        Ingest several uploads and describe the outcome of each.

        Args:
            files: (stream, filename, content type) triples

        Returns:
            One status sentence per file, e.g. "a.pdf uploaded successfully. "
        """
        messages = []
        for stream, filename, content_type in files:
            try:
                self.ingest(owner_id, stream, filename, content_type)
                messages.append(f"{filename} uploaded successfully. ")
            except DuplicateBookError:
                messages.append(f"{filename} already exists. ")
            except (IngestionError, ToolExecutionError) as e:
                logger.warning(f"Upload of {filename} rejected: {e}")
                messages.append(f"{filename} was rejected: {e}. ")
        return "".join(messages)

    def get_book(self, owner_id: int, filename: str) -> Book:
        """
        Look up a book by owner and stored filename.

        Raises:
            BookNotFoundError: No such book
        """
        book = self.session.query(Book).filter_by(user_id=owner_id, filename=filename).first()
        if book is None:
            raise BookNotFoundError(filename)
        return book

    def book_metadata(self, owner_id: int, filename: str) -> dict:
        book = self.get_book(owner_id, filename)
        return {"title": book.title, "author": book.author, "cover": book.cover}

    def total_pages(self, book: Book) -> int:
        """Page count (PDF) or spine length (EPUB)."""
        if book.is_epub:
            return self.navigation.total_pages(book.user_id, book.filename)
        return book.pages

    def open_book(self, owner_id: int, filename: str) -> OpenedBook:
        """
        Open a book for reading and mark it as currently reading.

        EPUB books come back with the stored reading position.
        """
        book = self.get_book(owner_id, filename)

        marker = self.session.query(CurrentlyReading).filter_by(book_id=book.id).first()
        if marker is None:
            self.session.add(CurrentlyReading(book_id=book.id, user_id=owner_id))
        else:
            marker.date_read = datetime.utcnow()
        self.session.commit()

        opened = OpenedBook(book=book, total_pages=self.total_pages(book))
        if book.format == FORMAT_EPUB:
            opened.position = self.navigation.current_position(owner_id, filename)
        return opened

    def edit_book(self, owner_id: int, filename: str, title: str, author: str,
                  cover_stream: Optional[BinaryIO] = None,
                  cover_filename: Optional[str] = None) -> Book:
        """
        Change title, author and optionally the cover, then update the index.

        Index failures are logged; the database change stands.

        Raises:
            BookNotFoundError: No such book
        """
        book = self.get_book(owner_id, filename)
        book.title = title
        book.author = author

        if cover_stream is not None and cover_filename:
            cover_name = Path(cover_filename.replace("\\", "/")).name
            cover_dir = self.config.storage.owner_cover_dir(owner_id)
            cover_dir.mkdir(parents=True, exist_ok=True)
            with open(cover_dir / cover_name, 'wb') as f:
                shutil.copyfileobj(cover_stream, f)
            book.cover = f"/cover/{owner_id}/{cover_name}"

        self.session.commit()

        info = BookInfo(
            owner_id=owner_id, book_id=book.id,
            title=book.title, author=book.author, cover=book.cover, url=book.url
        )
        failures = self.index.update_book(info, detail_page_indices(book.format, self.total_pages(book)))
        if failures:
            logger.warning(f"{failures} index document(s) of {filename} were not updated")

        logger.info(f"Edited metadata of {filename}")
        return book

    def delete_book(self, owner_id: int, filename: str) -> None:
        """
        Delete a book with its reading marker, cached state and index documents.

        Raises:
            BookNotFoundError: No such book
        """
        book = self.get_book(owner_id, filename)
        book_id = book.id
        pages = detail_page_indices(book.format, self.total_pages(book))

        # Reading marker goes with the book (relationship cascade / ON DELETE CASCADE)
        self.session.delete(book)
        self.session.commit()

        self.cache.delete_book(owner_id, filename)

        failures = self.index.delete_book(owner_id, book_id, pages)
        if failures:
            logger.warning(f"{failures} index document(s) of {filename} were not deleted")

        logger.info(f"Deleted {filename}")

    # EPUB navigation

    def epub_fragment_by_id(self, owner_id: int, filename: str, position: int) -> HrefData:
        return self.navigation.resolve_by_id(owner_id, filename, position)

    def epub_fragment(self, owner_id: int, filename: str, href: str, direction: str) -> HrefData:
        return self.navigation.step(owner_id, filename, href, direction)

    def epub_current_page(self, owner_id: int, filename: str, href: str) -> CurrentPageData:
        return self.navigation.resolve_current_page(owner_id, filename, href)

    # Listing and search

    def count_books(self, owner_id: int) -> int:
        return self.session.query(func.count(Book.id)).filter(Book.user_id == owner_id).scalar()

    def library_page(self, owner_id: int, page: int = 1) -> LibraryPage:
        """One listing page, newest books first, bucketed for every layout."""
        per_page = self.config.server.page_size
        books = (
            self.session.query(Book)
            .filter(Book.user_id == owner_id)
            .order_by(Book.id.desc())
            .offset(page_offset(page, per_page))
            .limit(per_page)
            .all()
        )
        return build_library_page(books, self.count_books(owner_id), per_page)

    def currently_reading(self, owner_id: int) -> List[Book]:
        """Most recently opened books."""
        return (
            self.session.query(Book)
            .join(CurrentlyReading, CurrentlyReading.book_id == Book.id)
            .filter(CurrentlyReading.user_id == owner_id)
            .order_by(CurrentlyReading.date_read.desc())
            .limit(self.config.server.currently_reading_limit)
            .all()
        )

    def home(self, owner_id: int) -> HomeView:
        return HomeView(
            currently_reading=self.currently_reading(owner_id),
            page=self.library_page(owner_id, 1),
        )

    def search(self, owner_id: int, term: str, limit: int = 50) -> SearchResult:
        """
        Search the index, keeping only the owner's books.

        Raises:
            IndexQueryError: Backend unreachable or query rejected
        """
        if not term.strip():
            return SearchResult()
        return self.index.query(term, limit=limit).for_owner(owner_id)
