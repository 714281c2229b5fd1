"""
Tests for the embedded SQLite FTS5 search index.
"""

import pytest

from readshelf.search.base import BookDetail, BookInfo
from readshelf.search.local import (
    LocalIndexBackend, build_match_query, composite_id, parse_composite_id
)


@pytest.fixture
def index(temp_dir):
    return LocalIndexBackend(temp_dir / "lr_index.db")


def info(book_id=1, owner_id=1, title="Great Expectations", author="Charles Dickens"):
    return BookInfo(owner_id=owner_id, book_id=book_id, title=title, author=author,
                    cover="/cover/x.png", url=f"/book/b{book_id}.pdf")


class TestCompositeId:
    def test_every_field_followed_by_separator(self):
        doc = info()
        assert composite_id(doc) == (
            "1*****1*****Great Expectations*****Charles Dickens*****/cover/x.png*****/book/b1.pdf*****"
        )

    def test_parse_round_trip(self):
        doc = info(book_id=4, owner_id=2)
        assert parse_composite_id(composite_id(doc)) == doc

    def test_parse_rejects_short_ids(self):
        with pytest.raises(ValueError):
            parse_composite_id("1*****2*****")

    def test_separator_inside_title_shifts_fields(self):
        doc = info(book_id=3, owner_id=2, title="Part*****Two")
        parsed = parse_composite_id(composite_id(doc))

        assert (parsed.owner_id, parsed.book_id) == (2, 3)
        assert (parsed.title, parsed.author, parsed.cover) == ("Part", "Two", "Charles Dickens")

    def test_match_query(self):
        assert build_match_query("great exp") == '"great"* OR "exp"*'
        assert build_match_query("  ?! ") == ""


class TestLocalIndex:
    """Indexing and querying."""

    def test_index_file_created(self, index, temp_dir):
        assert (temp_dir / "lr_index.db").exists()
        assert index.supports_detail_search is False

    def test_query_by_title_and_author(self, index):
        index.index_info(info(1, title="Great Expectations", author="Charles Dickens"))
        index.index_info(info(2, title="Emma", author="Jane Austen"))

        assert [hit.book_id for hit in index.query("expectations").book_info] == [1]
        assert [hit.book_id for hit in index.query("austen").book_info] == [2]

    def test_prefix_match(self, index):
        index.index_info(info(1))
        assert len(index.query("dick").book_info) == 1

    def test_reindex_replaces_document(self, index):
        index.index_info(info(1, title="Old Title"))
        index.index_info(info(1, title="New Title"))

        hits = index.query("title").book_info
        assert len(hits) == 1
        assert hits[0].title == "New Title"
        assert index.query("old").book_info == []

    def test_update_info_replaces(self, index):
        index.index_info(info(1, title="Draft"))
        index.update_info(info(1, title="Final"))

        assert [hit.title for hit in index.query("final").book_info] == ["Final"]
        assert index.query("draft").book_info == []

    def test_delete_info(self, index):
        index.index_info(info(1))
        index.index_info(info(11))
        index.delete_info(1, 1)

        assert [hit.book_id for hit in index.query("dickens").book_info] == [11]

    def test_owners_kept_apart(self, index):
        index.index_info(info(1, owner_id=1))
        index.index_info(info(1, owner_id=2))

        result = index.query("dickens")
        assert sorted(hit.owner_id for hit in result.book_info) == [1, 2]
        assert [hit.owner_id for hit in result.for_owner(2).book_info] == [2]

    def test_detail_documents_ignored(self, index):
        index.index_detail(BookDetail(1, 1, 1, "ZGF0YQ==", "T", "A"))
        index.update_detail(info(1), 1)
        index.delete_detail(1, 1, 1)
        assert index.query("data").book_detail == []

    def test_empty_query(self, index):
        index.index_info(info(1))
        result = index.query("   ")
        assert result.book_info == []
        assert result.book_detail == []
