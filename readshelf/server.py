"""
Web server for readshelf.

JSON API over the library: uploads, listing, EPUB navigation, metadata
edits, deletes and search. The reader is identified by the X-Owner-Id
header; requests without it act for the configured default owner.
"""

from pathlib import Path
from typing import Optional, List

from fastapi import FastAPI, HTTPException, UploadFile, File, Form, Query, Header
from fastapi.responses import FileResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import ReadShelfConfig
from .exceptions import BookNotFoundError, IndexQueryError
from .library import Library
from .pagination import LibraryPage
from .services.navigation import DIRECTIONS


# Pydantic models for API
class BookResponse(BaseModel):
    id: int
    title: str
    author: str
    filename: str
    url: str
    cover: str
    pages: int
    format: str


class BookMetadataResponse(BaseModel):
    title: str
    author: str
    cover: str


class HrefDataResponse(BaseModel):
    current_page: int
    href_path: str
    left_none: bool
    right_none: bool


class CurrentPageResponse(BaseModel):
    current_page: int
    left_none: bool
    right_none: bool


class OpenedBookResponse(BaseModel):
    book: BookResponse
    total_pages: int
    position: Optional[HrefDataResponse] = None


class LibraryPageResponse(BaseModel):
    total_pages: int
    books: List[BookResponse]
    large: List[List[BookResponse]]
    medium: List[List[BookResponse]]
    small: List[List[BookResponse]]


class HomeResponse(BaseModel):
    currently_reading: List[BookResponse]
    page: LibraryPageResponse


class MessageResponse(BaseModel):
    message: str


_library: Optional[Library] = None


def get_library() -> Library:
    """Get the current library instance."""
    if _library is None:
        raise HTTPException(status_code=500, detail="Library not initialized")
    return _library


def init_library(config: ReadShelfConfig):
    """Initialize the library."""
    global _library
    _library = Library.open(config)


def set_library(library: Optional[Library]):
    """Set the library instance directly (for testing)."""
    global _library
    _library = library


def create_app(config: ReadShelfConfig) -> FastAPI:
    """Create FastAPI application with initialized library."""
    init_library(config)
    return app


# Create FastAPI app
app = FastAPI(
    title="readshelf",
    description="Personal e-book library server",
    version="0.1.0"
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _owner(x_owner_id: Optional[int]) -> int:
    if x_owner_id is not None:
        return x_owner_id
    return get_library().config.server.default_owner_id


def _book_to_response(book) -> dict:
    """Convert Book ORM object to API response."""
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "filename": book.filename,
        "url": book.url,
        "cover": book.cover,
        "pages": book.pages,
        "format": book.format,
    }


def _page_to_response(page: LibraryPage) -> dict:
    def rows(buckets):
        return [[_book_to_response(book) for book in row] for row in buckets]

    return {
        "total_pages": page.total_pages,
        "books": [_book_to_response(book) for book in page.books],
        "large": rows(page.large),
        "medium": rows(page.medium),
        "small": rows(page.small),
    }


def _serve_under(root: Path, relative: str) -> FileResponse:
    """Serve a file below root, refusing paths that escape it."""
    root = root.resolve()
    target = (root / relative).resolve()
    if root not in target.parents or not target.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(target)


@app.get("/", response_model=HomeResponse)
async def home(x_owner_id: Optional[int] = Header(None)):
    """Recently opened books and the first listing page."""
    lib = get_library()
    view = lib.home(_owner(x_owner_id))
    return {
        "currently_reading": [_book_to_response(book) for book in view.currently_reading],
        "page": _page_to_response(view.page),
    }


@app.get("/page/{page}", response_model=LibraryPageResponse)
async def library_page(page: int, x_owner_id: Optional[int] = Header(None)):
    """One listing page, newest first."""
    if page < 1:
        raise HTTPException(status_code=400, detail="Page numbers start at 1")
    lib = get_library()
    return _page_to_response(lib.library_page(_owner(x_owner_id), page))


@app.post("/upload", response_model=MessageResponse)
async def upload(
    files: List[UploadFile] = File(...),
    x_owner_id: Optional[int] = Header(None)
):
    """Upload one or more PDF/EPUB files."""
    lib = get_library()
    message = lib.upload(
        _owner(x_owner_id),
        [(f.file, f.filename or "", f.content_type or "") for f in files]
    )
    return {"message": message}


@app.get("/book/{filename}", response_model=OpenedBookResponse)
async def open_book(filename: str, x_owner_id: Optional[int] = Header(None)):
    """Open a book and record it as currently reading."""
    lib = get_library()
    try:
        opened = lib.open_book(_owner(x_owner_id), filename)
    except BookNotFoundError:
        raise HTTPException(status_code=404, detail="Book not found")

    return {
        "book": _book_to_response(opened.book),
        "total_pages": opened.total_pages,
        "position": opened.position.to_dict() if opened.position else None,
    }


@app.get("/book-metadata", response_model=BookMetadataResponse)
async def book_metadata(
    file_name: str = Query(..., alias="fileName"),
    x_owner_id: Optional[int] = Header(None)
):
    """Title, author and cover of a book."""
    lib = get_library()
    try:
        return lib.book_metadata(_owner(x_owner_id), file_name)
    except BookNotFoundError:
        raise HTTPException(status_code=404, detail="Book not found")


@app.post("/edit-book", response_model=MessageResponse)
async def edit_book(
    filename: str = Form(...),
    title: str = Form(...),
    author: str = Form(...),
    cover: Optional[UploadFile] = File(None),
    x_owner_id: Optional[int] = Header(None)
):
    """Edit title/author and optionally replace the cover image."""
    lib = get_library()
    try:
        lib.edit_book(
            _owner(x_owner_id), filename, title, author,
            cover_stream=cover.file if cover else None,
            cover_filename=cover.filename if cover else None,
        )
    except BookNotFoundError:
        raise HTTPException(status_code=404, detail="Book not found")
    return {"message": "Book metadata saved successfully"}


@app.delete("/book/{filename}", response_model=MessageResponse)
async def delete_book(filename: str, x_owner_id: Optional[int] = Header(None)):
    """Delete a book and everything derived from it."""
    lib = get_library()
    try:
        lib.delete_book(_owner(x_owner_id), filename)
    except BookNotFoundError:
        raise HTTPException(status_code=404, detail="Book not found")
    return {"message": "Book deleted successfully"}


@app.get("/epub-current-page", response_model=CurrentPageResponse)
async def epub_current_page(
    file_name: str = Query(..., alias="fileName"),
    page_chapter: str = Query(..., alias="pageChapter"),
    x_owner_id: Optional[int] = Header(None)
):
    """Page number and boundaries of the fragment being displayed."""
    lib = get_library()
    return lib.epub_current_page(_owner(x_owner_id), file_name, page_chapter).to_dict()


@app.get("/epub-fragment/{direction}/{filename}", response_model=HrefDataResponse)
async def epub_fragment(
    direction: str,
    filename: str,
    href: str = Query(...),
    x_owner_id: Optional[int] = Header(None)
):
    """Step to the next or previous spine entry."""
    if direction not in DIRECTIONS:
        raise HTTPException(status_code=400, detail=f"Direction must be one of {', '.join(DIRECTIONS)}")
    lib = get_library()
    return lib.epub_fragment(_owner(x_owner_id), filename, href, direction).to_dict()


@app.get("/epub-fragment-id/{filename}/{position}", response_model=HrefDataResponse)
async def epub_fragment_by_id(
    filename: str,
    position: int,
    x_owner_id: Optional[int] = Header(None)
):
    """Jump to a 1-based spine position."""
    lib = get_library()
    return lib.epub_fragment_by_id(_owner(x_owner_id), filename, position).to_dict()


@app.get("/autocomplete")
async def autocomplete(
    term: str,
    limit: int = Query(50, ge=1, le=1000),
    x_owner_id: Optional[int] = Header(None)
):
    """Search book metadata and, when available, page content."""
    lib = get_library()
    try:
        results = lib.search(_owner(x_owner_id), term, limit=limit)
    except IndexQueryError as e:
        raise HTTPException(status_code=502, detail=f"Search index unavailable: {e}")
    return results.to_dict()


@app.get("/cover/{path:path}")
async def get_cover(path: str):
    """Serve a cover image, stored per owner as <owner>/<name>."""
    lib = get_library()
    return _serve_under(lib.config.storage.cover_root, path)


@app.get("/uploads/{path:path}")
async def get_upload(path: str):
    """Serve uploaded files and extracted EPUB content."""
    lib = get_library()
    return _serve_under(lib.config.storage.upload_root, path)
