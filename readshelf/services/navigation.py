"""
Reading position state machine for EPUB books.

A position is a spine index; the page number shown to the reader is the
spine index + 1. The current page and fragment are kept in the cache and
written before any result is returned, so a later read sees the step just
taken. Concurrent steps for the same book race and the last write wins.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Tuple
import logging

from ..cache import CacheField, CacheKey, KeyValueCache
from ..exceptions import NavigationResolutionError
from .epub_package import EPUBPackage

logger = logging.getLogger(__name__)

NEXT = "next"
PREVIOUS = "previous"
DIRECTIONS = (NEXT, PREVIOUS)


@dataclass
class HrefData:
    """Position returned to the viewer; page 0 means "cannot navigate"."""
    current_page: int = 0
    href_path: str = ""
    left_none: bool = False
    right_none: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CurrentPageData:
    """Page number and boundaries for an arbitrary fragment."""
    current_page: int = 0
    left_none: bool = False
    right_none: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def boundary_flags(page: int, spine_length: int) -> Tuple[bool, bool]:
    """(left_none, right_none) for a 1-based page."""
    return page <= 1, page >= spine_length


def fragment_from_href(href: str, package_path: str) -> str:
    """
    Reduce a viewer href to a manifest href.

    Drops any #anchor and everything up to and including the package path,
    so "/uploads/book/OEBPS/ch1.xhtml#p3" becomes "ch1.xhtml".
    """
    fragment = href.split("#", 1)[0]
    if package_path:
        marker = package_path.rstrip("/") + "/"
        if marker in fragment:
            fragment = fragment.split(marker, 1)[1]
    else:
        fragment = fragment.lstrip("/")
    return fragment


class NavigationStateMachine:
    """Pages through an EPUB spine using the cached package graph."""

    def __init__(self, cache: KeyValueCache):
        self.cache = cache

    def _load(self, owner_id: int, filename: str) -> Tuple[EPUBPackage, str]:
        raw = self.cache.get(CacheKey(owner_id, filename, CacheField.PACKAGE))
        if raw is None:
            raise NavigationResolutionError(f"No cached package for {filename}")
        try:
            package = EPUBPackage.from_json(raw)
        except (ValueError, TypeError) as e:
            raise NavigationResolutionError(f"Corrupt cached package for {filename}: {e}")
        if not package.spine:
            raise NavigationResolutionError(f"Empty spine for {filename}")

        package_path = self.cache.get(CacheKey(owner_id, filename, CacheField.PACKAGE_PATH)) or ""
        return package, package_path

    def _locate(self, package: EPUBPackage, fragment: str) -> int:
        index = package.spine_index_for_href(fragment)
        if index is None:
            raise NavigationResolutionError(f"Fragment {fragment!r} is not in the spine")
        return index

    def _persist(self, owner_id: int, filename: str, spine_index: int) -> None:
        self.cache.set(CacheKey(owner_id, filename, CacheField.CURRENT_PAGE), spine_index + 1)
        self.cache.set(CacheKey(owner_id, filename, CacheField.CURRENT_FRAGMENT), spine_index)

    @staticmethod
    def _href_data(package: EPUBPackage, package_path: str, spine_index: int) -> HrefData:
        page = spine_index + 1
        left_none, right_none = boundary_flags(page, package.spine_length)
        return HrefData(
            current_page=page,
            href_path=package.resolve_href(package.spine[spine_index], package_path),
            left_none=left_none,
            right_none=right_none,
        )

    def resolve_by_id(self, owner_id: int, filename: str, position: int) -> HrefData:
        """
        Jump to a 1-based spine position.

        Out-of-range positions return an empty href with the boundary flags
        of the clamped position, and leave the stored position untouched.
        """
        try:
            package, package_path = self._load(owner_id, filename)
        except NavigationResolutionError as e:
            logger.warning(f"Cannot jump to {position} in {filename}: {e}")
            return HrefData()

        length = package.spine_length
        if not 1 <= position <= length:
            clamped = min(max(position, 1), length)
            left_none, right_none = boundary_flags(clamped, length)
            logger.warning(f"Position {position} out of range 1..{length} for {filename}")
            return HrefData(current_page=clamped, href_path="", left_none=left_none, right_none=right_none)

        self._persist(owner_id, filename, position - 1)
        return self._href_data(package, package_path, position - 1)

    def step(self, owner_id: int, filename: str, href: str, direction: str) -> HrefData:
        """
        Move one spine entry forward or backward from the fragment at href.

        At either end of the spine nothing moves: the current href is
        returned with the matching boundary flag set.

        Raises:
            ValueError: direction is not "next" or "previous"
        """
        if direction not in DIRECTIONS:
            raise ValueError(f"Unknown direction: {direction}")

        try:
            package, package_path = self._load(owner_id, filename)
            index = self._locate(package, fragment_from_href(href, package_path))
        except NavigationResolutionError as e:
            logger.warning(f"Cannot step {direction} in {filename}: {e}")
            return HrefData()

        target = index + 1 if direction == NEXT else index - 1
        if not 0 <= target < package.spine_length:
            logger.debug(f"No {direction} fragment after spine index {index} in {filename}")
            return self._href_data(package, package_path, index)

        self._persist(owner_id, filename, target)
        return self._href_data(package, package_path, target)

    def resolve_current_page(self, owner_id: int, filename: str, href: str) -> CurrentPageData:
        """Page number and boundaries for a fragment href; does not move the reader."""
        try:
            package, package_path = self._load(owner_id, filename)
            index = self._locate(package, fragment_from_href(href, package_path))
        except NavigationResolutionError as e:
            logger.warning(f"Cannot resolve page of {href!r} in {filename}: {e}")
            return CurrentPageData()

        page = index + 1
        left_none, right_none = boundary_flags(page, package.spine_length)
        return CurrentPageData(current_page=page, left_none=left_none, right_none=right_none)

    def current_position(self, owner_id: int, filename: str) -> HrefData:
        """The stored reading position, as shown when a book is opened."""
        try:
            package, package_path = self._load(owner_id, filename)
        except NavigationResolutionError as e:
            logger.warning(f"No reading position for {filename}: {e}")
            return HrefData()

        index = self.cache.get_int(CacheKey(owner_id, filename, CacheField.CURRENT_FRAGMENT), 0)
        if not 0 <= index < package.spine_length:
            logger.warning(f"Stored fragment {index} out of range for {filename}")
            return HrefData()

        return self._href_data(package, package_path, index)

    def total_pages(self, owner_id: int, filename: str) -> int:
        """Cached spine length (EPUB) or page count (PDF); 0 if unknown."""
        return self.cache.get_int(CacheKey(owner_id, filename, CacheField.TOTAL_PAGES), 0)

    def package_path(self, owner_id: int, filename: str) -> str:
        """Public base path that fragment hrefs are rooted at."""
        return self.cache.get(CacheKey(owner_id, filename, CacheField.PACKAGE_PATH)) or ""
