"""
Ingestion of uploaded PDF and EPUB files.

An upload is normalized to a filename, checked for duplicates, written to
the upload directory, turned into a Book row, and then fed to the search
index. The Book row is committed before any indexing starts; index
failures are logged and never roll it back.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional
import base64
import logging
import re
import shutil
import time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..cache import CacheField, CacheKey, KeyValueCache
from ..config import ReadShelfConfig
from ..db.models import Book, FORMAT_EPUB, FORMAT_PDF
from ..exceptions import (
    DuplicateBookError, IndexWriteError, InvalidPageCountError,
    ToolExecutionError, UnsupportedFormatError
)
from ..search.adapter import SearchIndexAdapter
from ..search.base import BookDetail, BookInfo
from .epub_package import EPUBPackage, EPUBPackageResolver
from .tasks import TaskRunner
from .tools import COVER_SUFFIX, ExternalToolRunner

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "application/pdf": FORMAT_PDF,
    "application/epub+zip": FORMAT_EPUB,
}
EXTENSIONS = {FORMAT_PDF: ".pdf", FORMAT_EPUB: ".epub"}
UNKNOWN_AUTHOR = "unknown"

_WHITESPACE = re.compile(r"\s+")


def format_for_content_type(content_type: str) -> str:
    """
    Map a declared content type to a book format.

    Raises:
        UnsupportedFormatError: Neither PDF nor EPUB
    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    book_format = CONTENT_TYPES.get(media_type)
    if book_format is None:
        raise UnsupportedFormatError(content_type)
    return book_format


def normalize_filename(declared_filename: str, content_type: str) -> str:
    """
    Canonical stored filename for an upload.

    Directory parts and a known extension are dropped, whitespace runs
    become underscores, and the extension matching the content type is
    attached: ("My Book.pdf", "application/pdf") -> "My_Book.pdf".

    Raises:
        UnsupportedFormatError: Neither PDF nor EPUB
    """
    book_format = format_for_content_type(content_type)

    name = Path(declared_filename.replace("\\", "/")).name.strip()
    for extension in EXTENSIONS.values():
        if name.lower().endswith(extension):
            name = name[:-len(extension)]
            break

    name = _WHITESPACE.sub("_", name.strip()) or "untitled"
    return name + EXTENSIONS[book_format]


def cover_url(owner_id: int, filename: str) -> str:
    """Public URL of a rasterized PDF cover."""
    return f"/cover/{owner_id}/{filename}{COVER_SUFFIX}"


def book_url(filename: str) -> str:
    return f"/book/{filename}"


def encode_content(path: Path) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


@dataclass
class BookMeta:
    """Fields copied onto every index document of a book."""
    title: str
    author: str
    url: str
    cover: str


class IngestionPipeline:
    """Turns uploaded files into stored, indexed books."""

    def __init__(
        self,
        config: ReadShelfConfig,
        session: Session,
        runner: ExternalToolRunner,
        resolver: EPUBPackageResolver,
        adapter: SearchIndexAdapter,
        cache: KeyValueCache,
        tasks: TaskRunner,
    ):
        self.config = config
        self.session = session
        self.runner = runner
        self.resolver = resolver
        self.adapter = adapter
        self.cache = cache
        self.tasks = tasks

        self.upload_root = config.storage.upload_root
        self.cover_root = config.storage.cover_root
        self.upload_root.mkdir(parents=True, exist_ok=True)
        self.cover_root.mkdir(parents=True, exist_ok=True)

    def find_book(self, owner_id: int, filename: str) -> Optional[Book]:
        return self.session.query(Book).filter_by(user_id=owner_id, filename=filename).first()

    def ingest(self, owner_id: int, stream: BinaryIO, declared_filename: str,
               content_type: str) -> int:
        """
        Ingest one uploaded file.

        Args:
            owner_id: Uploading user
            stream: Binary file object positioned at the start of the upload
            declared_filename: Filename as sent by the client
            content_type: Declared media type

        Returns:
            ID of the new Book

        Raises:
            UnsupportedFormatError: Content type is neither PDF nor EPUB
            DuplicateBookError: Owner already has a book with this filename
            InvalidPageCountError: PDF page count missing or not positive
            MalformedPackageError: EPUB container or package is broken
            ToolExecutionError: pdfinfo or unzip failed
        """
        book_format = format_for_content_type(content_type)
        filename = normalize_filename(declared_filename, content_type)

        if self.find_book(owner_id, filename) is not None:
            logger.info(f"Rejecting duplicate upload {filename} for owner {owner_id}")
            raise DuplicateBookError(filename)

        owner_dir = self.config.storage.owner_upload_dir(owner_id)
        owner_dir.mkdir(parents=True, exist_ok=True)
        file_path = owner_dir / filename
        with open(file_path, 'wb') as f:
            shutil.copyfileobj(stream, f)
        logger.info(f"Saved upload {filename} ({file_path.stat().st_size} bytes)")

        if book_format == FORMAT_PDF:
            book = self._ingest_pdf(owner_id, filename, file_path)
        else:
            book = self._ingest_epub(owner_id, filename, file_path)

        logger.info(f"Ingested {filename} as book {book.id} for owner {owner_id}")
        return book.id

    def _insert(self, book: Book) -> Book:
        self.session.add(book)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise DuplicateBookError(book.filename)
        return book

    def _index_info(self, book: Book) -> None:
        info = BookInfo(
            owner_id=book.user_id,
            book_id=book.id,
            title=book.title,
            author=book.author,
            cover=book.cover,
            url=book.url,
        )
        try:
            self.adapter.index_info(info)
        except IndexWriteError as e:
            logger.error(f"Failed to index {book.filename}: {e}")

    def _ingest_pdf(self, owner_id: int, filename: str, file_path: Path) -> Book:
        info = self.runner.extract_info(file_path)

        try:
            pages = int(info.pages)
        except ValueError:
            raise InvalidPageCountError(filename, info.pages)
        if pages < 1:
            raise InvalidPageCountError(filename, info.pages)

        cover = ""
        try:
            cover_prefix = self.config.storage.owner_cover_dir(owner_id) / filename
            if self.runner.rasterize_cover(file_path, cover_prefix):
                cover = cover_url(owner_id, filename)
        except ToolExecutionError as e:
            logger.warning(f"Cover extraction failed for {filename}: {e}")

        book = self._insert(Book(
            user_id=owner_id,
            title=info.title or filename,
            author=info.author or UNKNOWN_AUTHOR,
            filename=filename,
            file_path=str(file_path),
            url=book_url(filename),
            cover=cover,
            pages=pages,
            format=FORMAT_PDF,
        ))
        self.cache.set(CacheKey(owner_id, filename, CacheField.TOTAL_PAGES), pages)

        self._index_info(book)

        if self.adapter.detail_search_available:
            meta = BookMeta(book.title, book.author, book.url, book.cover)
            self.tasks.submit(
                f"page feed for {filename}",
                self.feed_pdf_pages, owner_id, book.id, file_path, pages, meta
            )
        return book

    def _ingest_epub(self, owner_id: int, filename: str, file_path: Path) -> Book:
        package = self.resolver.unpack(owner_id, file_path, filename)

        book = self._insert(Book(
            user_id=owner_id,
            title=package.title or filename,
            author=package.author or UNKNOWN_AUTHOR,
            filename=filename,
            file_path=package.base_path,
            url=book_url(filename),
            cover=self.resolver.public_path(package.cover),
            pages=1,
            format=FORMAT_EPUB,
        ))
        # A lost insert race must not reset the existing book's position
        self.resolver.store(owner_id, filename, package)

        self._index_info(book)

        if self.adapter.detail_search_available:
            meta = BookMeta(book.title, book.author, book.url, book.cover)
            self.tasks.submit(
                f"spine feed for {filename}",
                self.feed_epub_spine, owner_id, book.id, package, meta
            )
        return book

    def _index_detail(self, doc: BookDetail) -> bool:
        try:
            self.adapter.index_detail(doc)
            return True
        except IndexWriteError as e:
            logger.warning(f"Skipping page {doc.page} of book {doc.book_id}: {e}")
            return False

    def feed_pdf_pages(self, owner_id: int, book_id: int, pdf_path: Path,
                       pages: int, meta: BookMeta) -> int:
        """
        Split a PDF and index each page as a detail document.

        The split directory is removed afterwards whatever happens.

        Returns:
            Number of pages indexed
        """
        split_dir = self.upload_root / f"splitpdf_{owner_id}_{time.time_ns()}"
        indexed = 0
        try:
            self.runner.split_pages(pdf_path, split_dir)
            for page in range(1, pages + 1):
                page_file = split_dir / f"{page}.pdf"
                if not page_file.exists():
                    logger.debug(f"No split file for page {page} of {pdf_path.name}")
                    continue
                doc = BookDetail(
                    owner_id=owner_id,
                    book_id=book_id,
                    page=page,
                    data=encode_content(page_file),
                    title=meta.title,
                    author=meta.author,
                    url=meta.url,
                    cover=meta.cover,
                    format=FORMAT_PDF,
                )
                if self._index_detail(doc):
                    indexed += 1
        finally:
            shutil.rmtree(split_dir, ignore_errors=True)

        logger.info(f"Indexed {indexed}/{pages} pages of {pdf_path.name}")
        return indexed

    def feed_epub_spine(self, owner_id: int, book_id: int, package: EPUBPackage,
                        meta: BookMeta) -> int:
        """
        Index each spine entry of an EPUB as a detail document.

        Returns:
            Number of spine entries indexed
        """
        base_path = Path(package.base_path)
        indexed = 0
        for index, idref in enumerate(package.spine):
            item = package.find_item(idref)
            if item is None:
                logger.warning(f"Spine entry {idref!r} has no manifest item, skipping")
                continue
            content_file = base_path / item.href
            if not content_file.exists():
                logger.warning(f"Spine file missing: {content_file}")
                continue
            doc = BookDetail(
                owner_id=owner_id,
                book_id=book_id,
                page=index,
                data=encode_content(content_file),
                title=meta.title,
                author=meta.author,
                url=meta.url,
                cover=meta.cover,
                format=FORMAT_EPUB,
                se_url=item.href,
            )
            if self._index_detail(doc):
                indexed += 1

        logger.info(f"Indexed {indexed}/{package.spine_length} spine entries of book {book_id}")
        return indexed
