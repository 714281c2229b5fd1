"""
Tests for EPUB reading-position navigation.
"""

import pytest

from readshelf.cache import CacheField, CacheKey, MemoryCache
from readshelf.services.epub_package import EPUBPackageResolver
from readshelf.services.navigation import (
    NEXT, PREVIOUS, CurrentPageData, HrefData, NavigationStateMachine,
    boundary_flags, fragment_from_href
)

OWNER = 1
NAME = "A_Tale.epub"
PACKAGE_PATH = "/uploads/1/A_Tale/OEBPS"


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def navigation(cache, epub_file, tool_runner, temp_dir):
    """Navigation over a cached 4-chapter book."""
    resolver = EPUBPackageResolver(tool_runner, cache, temp_dir / "uploads")
    resolver.resolve(OWNER, epub_file(chapters=4), NAME)
    return NavigationStateMachine(cache)


def href(chapter: int) -> str:
    return f"{PACKAGE_PATH}/ch{chapter}.xhtml"


def stored_fragment(cache) -> int:
    return cache.get_int(CacheKey(OWNER, NAME, CacheField.CURRENT_FRAGMENT))


class TestHelpers:
    """Pure helpers."""

    def test_boundary_flags(self):
        assert boundary_flags(1, 4) == (True, False)
        assert boundary_flags(2, 4) == (False, False)
        assert boundary_flags(4, 4) == (False, True)
        assert boundary_flags(1, 1) == (True, True)

    @pytest.mark.parametrize("raw,expected", [
        ("/uploads/1/A_Tale/OEBPS/ch2.xhtml", "ch2.xhtml"),
        ("/uploads/1/A_Tale/OEBPS/ch2.xhtml#section-3", "ch2.xhtml"),
        ("http://host/uploads/1/A_Tale/OEBPS/text/ch2.xhtml", "text/ch2.xhtml"),
        ("ch2.xhtml", "ch2.xhtml"),
    ])
    def test_fragment_from_href(self, raw, expected):
        assert fragment_from_href(raw, PACKAGE_PATH) == expected

    def test_fragment_without_package_path(self):
        assert fragment_from_href("/ch1.xhtml#top", "") == "ch1.xhtml"


class TestResolveById:
    """Jumping to a spine position."""

    def test_middle_of_book_has_no_boundaries(self, navigation):
        result = navigation.resolve_by_id(OWNER, NAME, 2)

        assert result.current_page == 2
        assert result.href_path == href(2)
        assert result.left_none is False
        assert result.right_none is False

    def test_last_position_sets_right_boundary(self, navigation):
        result = navigation.resolve_by_id(OWNER, NAME, 4)
        assert result.right_none is True
        assert result.left_none is False

    def test_first_position_sets_left_boundary(self, navigation):
        result = navigation.resolve_by_id(OWNER, NAME, 1)
        assert result.left_none is True

    def test_jump_persists_position(self, navigation, cache):
        navigation.resolve_by_id(OWNER, NAME, 3)

        assert stored_fragment(cache) == 2
        assert cache.get_int(CacheKey(OWNER, NAME, CacheField.CURRENT_PAGE)) == 3

    @pytest.mark.parametrize("position,page,left,right", [(0, 1, True, False), (9, 4, False, True)])
    def test_out_of_range_returns_clamped_flags_without_moving(self, navigation, cache,
                                                               position, page, left, right):
        navigation.resolve_by_id(OWNER, NAME, 2)
        result = navigation.resolve_by_id(OWNER, NAME, position)

        assert result == HrefData(current_page=page, href_path="", left_none=left, right_none=right)
        assert stored_fragment(cache) == 1

    def test_unknown_book_degrades_to_zero(self, navigation):
        assert navigation.resolve_by_id(OWNER, "missing.epub", 1) == HrefData()

    def test_other_owner_cannot_navigate(self, navigation):
        assert navigation.resolve_by_id(OWNER + 1, NAME, 1).current_page == 0


class TestStep:
    """Moving forward and backward through the spine."""

    def test_next_moves_forward_and_persists(self, navigation, cache):
        result = navigation.step(OWNER, NAME, href(2), NEXT)

        assert result.current_page == 3
        assert result.href_path == href(3)
        assert stored_fragment(cache) == 2

    def test_previous_moves_backward(self, navigation):
        result = navigation.step(OWNER, NAME, href(3), PREVIOUS)

        assert result.current_page == 2
        assert result.href_path == href(2)

    def test_previous_to_first_page_sets_left_boundary(self, navigation):
        result = navigation.step(OWNER, NAME, href(2), PREVIOUS)
        assert result.current_page == 1
        assert result.left_none is True

    def test_previous_from_first_page_stays_put(self, navigation, cache):
        result = navigation.step(OWNER, NAME, href(1), PREVIOUS)

        assert result.current_page == 1
        assert result.href_path == href(1)
        assert result.left_none is True
        assert stored_fragment(cache) == 0

    def test_next_from_last_page_stays_put(self, navigation, cache):
        navigation.resolve_by_id(OWNER, NAME, 2)
        result = navigation.step(OWNER, NAME, href(4), NEXT)

        assert result.current_page == 4
        assert result.href_path == href(4)
        assert result.right_none is True
        assert stored_fragment(cache) == 1

    def test_anchor_is_ignored(self, navigation):
        result = navigation.step(OWNER, NAME, href(1) + "#note-2", NEXT)
        assert result.current_page == 2

    def test_unknown_fragment_degrades_to_zero(self, navigation):
        assert navigation.step(OWNER, NAME, f"{PACKAGE_PATH}/nope.xhtml", NEXT) == HrefData()

    def test_unknown_direction_rejected(self, navigation):
        with pytest.raises(ValueError):
            navigation.step(OWNER, NAME, href(1), "sideways")


class TestCurrentPage:
    """Read-only page lookup."""

    @pytest.mark.parametrize("position", [1, 2, 3, 4])
    def test_round_trip(self, navigation, position):
        jumped = navigation.resolve_by_id(OWNER, NAME, position)
        page = navigation.resolve_current_page(OWNER, NAME, jumped.href_path)

        assert page.current_page == position
        assert page.left_none == jumped.left_none
        assert page.right_none == jumped.right_none

    def test_lookup_does_not_move_reader(self, navigation, cache):
        navigation.resolve_current_page(OWNER, NAME, href(3))
        assert stored_fragment(cache) == 0

    def test_unknown_fragment(self, navigation):
        assert navigation.resolve_current_page(OWNER, NAME, "x.xhtml") == CurrentPageData()

    def test_current_position_follows_steps(self, navigation):
        assert navigation.current_position(OWNER, NAME).current_page == 1

        navigation.step(OWNER, NAME, href(1), NEXT)
        navigation.step(OWNER, NAME, href(2), NEXT)

        position = navigation.current_position(OWNER, NAME)
        assert position.current_page == 3
        assert position.href_path == href(3)

    def test_total_pages_and_package_path(self, navigation):
        assert navigation.total_pages(OWNER, NAME) == 4
        assert navigation.package_path(OWNER, NAME) == PACKAGE_PATH
