"""
Library listing pagination.

Splits one ordered page of books into rows for each grid breakpoint:
rows of 6 (large screens), 3 (medium), 2 (small) plus the flat list for
the smallest layout.
"""

from dataclasses import dataclass, field
from typing import List, Sequence, TypeVar

T = TypeVar('T')

BOOKS_PER_PAGE = 18
LARGE_ROW = 6
MEDIUM_ROW = 3
SMALL_ROW = 2


def bucket(items: Sequence[T], size: int) -> List[List[T]]:
    """
    Split items into consecutive groups of size; the last may be shorter.

    Raises:
        ValueError: size is not positive
    """
    if size < 1:
        raise ValueError(f"Bucket size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def total_pages(book_count: int, per_page: int = BOOKS_PER_PAGE) -> int:
    """
    Number of listing pages for book_count books.

    The quotient is rounded to one decimal; a zero decimal means the books
    fill the pages exactly, anything else needs one more page. The modulo
    check covers page sizes above 19, where rounding can hide a remainder.
    """
    quotient = book_count / per_page
    decimal = f"{quotient:.1f}".split(".")[1]
    if decimal == "0" and book_count % per_page == 0:
        return int(quotient)
    return int(quotient) + 1


def page_offset(page: int, per_page: int = BOOKS_PER_PAGE) -> int:
    """Row offset of a 1-based listing page; pages below 1 map to the first."""
    return (max(page, 1) - 1) * per_page


@dataclass
class LibraryPage:
    """One listing page bucketed for every layout."""
    total_pages: int
    books: List = field(default_factory=list)
    large: List[List] = field(default_factory=list)
    medium: List[List] = field(default_factory=list)
    small: List[List] = field(default_factory=list)

    @property
    def extra_small(self) -> List:
        return self.books


def build_library_page(books: Sequence[T], book_count: int,
                       per_page: int = BOOKS_PER_PAGE) -> LibraryPage:
    """Bucket an ordered page of books for all layouts."""
    return LibraryPage(
        total_pages=total_pages(book_count, per_page),
        books=list(books),
        large=bucket(books, LARGE_ROW),
        medium=bucket(books, MEDIUM_ROW),
        small=bucket(books, SMALL_ROW),
    )
