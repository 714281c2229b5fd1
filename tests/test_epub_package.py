"""
Tests for EPUB package parsing, cover detection and caching.
"""

import zipfile

import pytest

from readshelf.cache import CacheField, CacheKey, MemoryCache
from readshelf.exceptions import MalformedPackageError
from readshelf.services.epub_package import (
    EPUBPackage, EPUBPackageResolver, ManifestItem, package_base_dir,
    parse_package_document, read_root_path, resolve_cover, scan_img_src
)


@pytest.fixture
def resolver(temp_dir, tool_runner):
    return EPUBPackageResolver(tool_runner, MemoryCache(), temp_dir / "uploads")


def unpack(path, destination):
    with zipfile.ZipFile(path) as archive:
        archive.extractall(destination)
    return destination


class TestContainer:
    """META-INF/container.xml handling."""

    def test_reads_rootfile_path(self, epub_file, temp_dir):
        unzip_dir = unpack(epub_file(), temp_dir / "out")
        assert read_root_path(unzip_dir) == "OEBPS/content.opf"

    def test_missing_container(self, temp_dir):
        with pytest.raises(MalformedPackageError):
            read_root_path(temp_dir)

    def test_container_without_rootfile(self, temp_dir):
        meta = temp_dir / "META-INF"
        meta.mkdir()
        (meta / "container.xml").write_text("<container><rootfiles/></container>")
        with pytest.raises(MalformedPackageError):
            read_root_path(temp_dir)

    def test_unparseable_container(self, temp_dir):
        meta = temp_dir / "META-INF"
        meta.mkdir()
        (meta / "container.xml").write_text("<container><rootfiles>")
        with pytest.raises(MalformedPackageError):
            read_root_path(temp_dir)

    def test_base_dir_is_first_segment(self, temp_dir):
        assert package_base_dir(temp_dir, "OEBPS/content.opf") == temp_dir / "OEBPS"
        assert package_base_dir(temp_dir, "content.opf") == temp_dir


class TestPackageDocument:
    """OPF manifest and spine parsing."""

    def test_manifest_and_spine_in_document_order(self, epub_file, temp_dir):
        unzip_dir = unpack(epub_file(chapters=3), temp_dir / "out")
        package = parse_package_document(unzip_dir / "OEBPS" / "content.opf")

        assert package.spine == ["ch1", "ch2", "ch3"]
        assert [item.href for item in package.manifest] == ["ch1.xhtml", "ch2.xhtml", "ch3.xhtml"]
        assert package.title == "A Tale"
        assert package.author == "Someone"

    def test_empty_spine_is_malformed(self, temp_dir):
        opf = temp_dir / "content.opf"
        opf.write_text(
            '<package xmlns="http://www.idpf.org/2007/opf"><manifest>'
            '<item id="a" href="a.xhtml"/></manifest><spine/></package>'
        )
        with pytest.raises(MalformedPackageError):
            parse_package_document(opf)

    def test_recovers_from_sloppy_markup(self, temp_dir):
        opf = temp_dir / "content.opf"
        opf.write_text(
            '<package><metadata><title>Loose & Fast</title></metadata>'
            '<manifest><item id="a" href="a.xhtml"/></manifest>'
            '<spine><itemref idref="a"/></spine>'
        )
        package = parse_package_document(opf)
        assert package.spine == ["a"]

    def test_missing_metadata_gives_empty_strings(self, epub_file, temp_dir):
        unzip_dir = unpack(epub_file(title="", author=""), temp_dir / "out")
        package = parse_package_document(unzip_dir / "OEBPS" / "content.opf")
        assert package.title == ""
        assert package.author == ""


class TestSpineLookup:
    """Spine references resolve against the manifest."""

    def test_every_idref_resolves_for_well_formed_package(self, epub_file, resolver):
        package = resolver.resolve(1, epub_file(chapters=4), "A_Tale.epub")
        for idref in package.spine:
            assert package.manifest_item(idref).id == idref
        assert package.missing_spine_refs() == []

    def test_dangling_idref_fails_lookup(self, epub_file, resolver):
        package = resolver.resolve(1, epub_file(chapters=2, dangling_ref="ghost"), "A_Tale.epub")

        assert package.missing_spine_refs() == ["ghost"]
        with pytest.raises(MalformedPackageError):
            package.manifest_item("ghost")

    def test_resolve_href(self):
        package = EPUBPackage(manifest=[ManifestItem("a", "text/a.xhtml")], spine=["a"])
        assert package.resolve_href("a", "/uploads/book/OEBPS") == "/uploads/book/OEBPS/text/a.xhtml"
        assert package.resolve_href("missing", "/uploads/book/OEBPS") == ""

    def test_json_round_trip(self):
        package = EPUBPackage(
            manifest=[ManifestItem("a", "a.xhtml", "application/xhtml+xml")],
            spine=["a"], title="T", author="A", base_path="/x", cover="/x/c.jpg",
        )
        assert EPUBPackage.from_json(package.to_json()) == package


class TestCover:
    """Cover detection heuristics."""

    def test_scan_img_src(self):
        assert scan_img_src('<div><img class="c" src="img/c.png" /></div>') == "img/c.png"
        assert scan_img_src("<p>no image</p>") == ""

    def test_cover_page_image_is_found(self, epub_file, resolver, temp_dir):
        package = resolver.resolve(1, epub_file(with_cover=True), "A_Tale.epub")
        expected = temp_dir / "uploads" / "1" / "A_Tale" / "OEBPS" / "images" / "cover.jpg"
        assert package.cover == str(expected)

    def test_no_cover(self, epub_file, resolver):
        package = resolver.resolve(1, epub_file(), "A_Tale.epub")
        assert package.cover == ""

    def test_image_cover_under_html_named_directory(self, temp_dir):
        package = EPUBPackage(
            manifest=[ManifestItem("cover-image", "images/cover.jpg", "image/jpeg"),
                      ManifestItem("ch1", "ch1.xhtml", "application/xhtml+xml")],
            spine=["ch1"],
        )
        base = temp_dir / "var" / "www" / "html" / "uploads" / "book" / "OEBPS"
        assert resolve_cover(package, base) == str(base / "images" / "cover.jpg")


class TestResolverCache:
    """Resolved packages are cached per owner and filename."""

    def test_resolve_stores_package_and_resets_position(self, epub_file, resolver):
        resolver.resolve(7, epub_file(chapters=4), "A_Tale.epub")
        cache = resolver.cache

        assert cache.get_int(CacheKey(7, "A_Tale.epub", CacheField.TOTAL_PAGES)) == 4
        assert cache.get_int(CacheKey(7, "A_Tale.epub", CacheField.CURRENT_PAGE)) == 1
        assert cache.get_int(CacheKey(7, "A_Tale.epub", CacheField.CURRENT_FRAGMENT)) == 0
        assert cache.get(CacheKey(7, "A_Tale.epub", CacheField.PACKAGE_PATH)) == "/uploads/7/A_Tale/OEBPS"
        assert resolver.load_cached(7, "A_Tale.epub").spine_length == 4

    def test_other_owner_has_no_package(self, epub_file, resolver):
        resolver.resolve(7, epub_file(), "A_Tale.epub")
        assert resolver.load_cached(8, "A_Tale.epub") is None

    def test_unpacks_next_to_uploads(self, epub_file, resolver, temp_dir):
        resolver.resolve(1, epub_file(), "A_Tale.epub")
        assert (temp_dir / "uploads" / "1" / "A_Tale" / "META-INF" / "container.xml").exists()
        assert "unzip" in resolver.runner.calls

    def test_unpack_leaves_cache_alone(self, epub_file, resolver):
        package = resolver.unpack(1, epub_file(), "A_Tale.epub")
        assert package.spine_length == 4
        assert resolver.load_cached(1, "A_Tale.epub") is None
