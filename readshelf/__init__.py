"""
readshelf - a personal e-book library server for PDF and EPUB books.

Main API:
    from readshelf import Library
    from readshelf.config import load_config

    # Open or create the library described by the configuration
    lib = Library.open(load_config())

    # Upload a book
    with open("novel.epub", "rb") as f:
        book_id = lib.ingest(1, f, "novel.epub", "application/epub+zip")

    # Page through it
    position = lib.epub_fragment_by_id(1, "novel.epub", 2)

    # Search titles, authors and (remote index) page content
    results = lib.search(1, "dickens")

    # Always close when done
    lib.close()
"""

from .library import Library

__all__ = ['Library']
