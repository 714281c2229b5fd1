"""
EPUB package resolution.

Turns an uploaded EPUB archive into an EPUBPackage: the manifest (every
content file with its id) and the spine (the reading order as a list of
manifest ids). The parsed package is cached per book so navigation never
re-reads the archive.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional
import json
import logging
import re

from lxml import etree

from ..cache import CacheField, CacheKey, KeyValueCache
from ..exceptions import MalformedPackageError
from .tools import ExternalToolRunner

logger = logging.getLogger(__name__)

CONTAINER_PATH = Path("META-INF") / "container.xml"
DOCUMENT_MARKERS = ("html", "xml")

_IMG_SRC = re.compile(r'\bsrc\s*=\s*["\']([^"\']*)["\']', re.IGNORECASE)


@dataclass
class ManifestItem:
    """One content file listed in the OPF manifest."""
    id: str
    href: str
    media_type: str = ""


@dataclass
class EPUBPackage:
    """Manifest/spine graph of one EPUB book."""
    manifest: List[ManifestItem] = field(default_factory=list)
    spine: List[str] = field(default_factory=list)
    title: str = ""
    author: str = ""
    base_path: str = ""  # On-disk directory that manifest hrefs are relative to
    cover: str = ""  # On-disk cover image path, empty if none

    @property
    def spine_length(self) -> int:
        return len(self.spine)

    def find_item(self, item_id: str) -> Optional[ManifestItem]:
        """First manifest item with this id, or None."""
        for item in self.manifest:
            if item.id == item_id:
                return item
        return None

    def manifest_item(self, idref: str) -> ManifestItem:
        """
        Strict lookup of a spine reference.

        Raises:
            MalformedPackageError: idref is not a manifest id
        """
        item = self.find_item(idref)
        if item is None:
            raise MalformedPackageError(f"Spine reference {idref!r} is not in the manifest")
        return item

    def resolve_href(self, idref: str, prefix: str) -> str:
        """
        Return ``prefix + "/" + href`` for the manifest item with this id.

        Returns "" when nothing matches; callers treat that as unresolved.
        """
        item = self.find_item(idref)
        if item is None:
            return ""
        return f"{prefix}/{item.href}"

    def spine_index_for_href(self, href: str) -> Optional[int]:
        """Spine index of the first manifest item with this href."""
        for item in self.manifest:
            if item.href == href:
                try:
                    return self.spine.index(item.id)
                except ValueError:
                    return None
        return None

    def missing_spine_refs(self) -> List[str]:
        """Spine references with no matching manifest id."""
        ids = {item.id for item in self.manifest}
        return [idref for idref in self.spine if idref not in ids]

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> 'EPUBPackage':
        data = json.loads(raw)
        manifest = [ManifestItem(**item) for item in data.get("manifest", [])]
        return cls(
            manifest=manifest,
            spine=list(data.get("spine", [])),
            title=data.get("title", ""),
            author=data.get("author", ""),
            base_path=data.get("base_path", ""),
            cover=data.get("cover", ""),
        )


def _local_xpath(local_names: List[str]) -> str:
    """Namespace-agnostic descendant path, e.g. //*[local-name()='a']/*[local-name()='b']."""
    return "//" + "/".join(f"*[local-name()='{name}']" for name in local_names)


def read_root_path(unzip_dir: Path) -> str:
    """
    Read the package document path from META-INF/container.xml.

    Raises:
        MalformedPackageError: Container missing, unparseable or without rootfile
    """
    container = Path(unzip_dir) / CONTAINER_PATH
    if not container.exists():
        raise MalformedPackageError(f"Missing {CONTAINER_PATH}")

    try:
        tree = etree.parse(str(container))
    except (etree.XMLSyntaxError, OSError) as e:
        raise MalformedPackageError(f"Unreadable {CONTAINER_PATH}: {e}")

    rootfiles = tree.xpath(_local_xpath(["rootfile"]))
    full_path = rootfiles[0].get("full-path") if rootfiles else None
    if not full_path:
        raise MalformedPackageError(f"No rootfile full-path in {CONTAINER_PATH}")

    return full_path


def package_base_dir(unzip_dir: Path, root_path: str) -> Path:
    """Directory manifest hrefs resolve against: the root path's first segment."""
    if "/" in root_path:
        return Path(unzip_dir) / root_path.split("/")[0]
    return Path(unzip_dir)


def _first_text(tree, local_names: List[str]) -> str:
    nodes = tree.xpath(_local_xpath(local_names))
    for node in nodes:
        text = (node.text or "").strip()
        if text:
            return text
    return ""


def parse_package_document(opf_path: Path) -> EPUBPackage:
    """
    Parse an OPF package document into manifest items and spine references.

    The document is parsed as generic XML with error recovery, whatever
    media type it declares.

    Raises:
        MalformedPackageError: Unreadable document or empty spine
    """
    opf_path = Path(opf_path)
    if not opf_path.exists():
        raise MalformedPackageError(f"Package document not found: {opf_path.name}")

    parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)
    try:
        tree = etree.parse(str(opf_path), parser)
    except (etree.XMLSyntaxError, OSError) as e:
        raise MalformedPackageError(f"Unreadable package document {opf_path.name}: {e}")
    if tree.getroot() is None:
        raise MalformedPackageError(f"Empty package document {opf_path.name}")

    manifest = [
        ManifestItem(
            id=node.get("id", ""),
            href=node.get("href", ""),
            media_type=node.get("media-type", ""),
        )
        for node in tree.xpath(_local_xpath(["manifest", "item"]))
    ]
    spine = [
        node.get("idref", "")
        for node in tree.xpath(_local_xpath(["spine", "itemref"]))
    ]

    if not spine:
        raise MalformedPackageError(f"Package document {opf_path.name} has an empty spine")

    return EPUBPackage(
        manifest=manifest,
        spine=spine,
        title=_first_text(tree, ["metadata", "title"]),
        author=_first_text(tree, ["metadata", "creator"]),
    )


def scan_img_src(content: str) -> str:
    """
    Find the src of the first <img> tag by scanning text.

    Cover pages are often malformed HTML, so this is a heuristic over the
    raw text rather than a structural parse.
    """
    start = content.find("<img")
    if start == -1:
        return ""
    end = content.find(">", start)
    tag = content[start:] if end == -1 else content[start:end + 1]
    match = _IMG_SRC.search(tag)
    return match.group(1) if match else ""


def resolve_cover(package: EPUBPackage, base_dir: Path) -> str:
    """
    Locate the cover image of a package.

    Prefers the first spine entry when its id mentions "cover", otherwise the
    first manifest id mentioning "cover". HTML/XML cover pages are scanned
    for their first image.

    Returns:
        On-disk cover path, or "" when no cover is found
    """
    href = ""
    first_ref = package.spine[0] if package.spine else ""
    if "cover" in first_ref:
        item = package.find_item(first_ref)
        href = item.href if item else ""
    else:
        for item in package.manifest:
            if "cover" in item.id:
                href = item.href
                break

    if not href:
        return ""

    # Only the href decides; the base directory may itself contain "html"
    cover_file = Path(base_dir) / href
    if not any(marker in href.lower() for marker in DOCUMENT_MARKERS):
        return str(cover_file)

    try:
        content = cover_file.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Cannot read cover page {cover_file}: {e}")
        return ""

    src = scan_img_src(content)
    if not src:
        return ""
    return str(Path(base_dir) / src)


class EPUBPackageResolver:
    """Unpacks EPUB uploads, parses their package and caches the result."""

    def __init__(self, runner: ExternalToolRunner, cache: KeyValueCache,
                 upload_root: Path, public_prefix: str = "/uploads"):
        self.runner = runner
        self.cache = cache
        self.upload_root = Path(upload_root)
        self.public_prefix = public_prefix.rstrip("/")

    def unpack_dir(self, owner_id: int, filename: str) -> Path:
        """Extraction directory under the owner's upload directory, named after the file stem."""
        return self.upload_root / str(owner_id) / Path(filename).stem

    def unpack(self, owner_id: int, archive_path: Path, filename: str) -> EPUBPackage:
        """
        Unzip and parse an EPUB upload without touching the cache.

        Raises:
            ToolExecutionError: unzip failed
            MalformedPackageError: container or package document is broken
        """
        unzip_dir = self.runner.unzip_archive(archive_path, self.unpack_dir(owner_id, filename))
        return self.load(unzip_dir)

    def resolve(self, owner_id: int, archive_path: Path, filename: str) -> EPUBPackage:
        """Unzip, parse and cache an EPUB upload; see unpack and store."""
        package = self.unpack(owner_id, archive_path, filename)
        self.store(owner_id, filename, package)
        return package

    def load(self, unzip_dir: Path) -> EPUBPackage:
        """Parse an already extracted EPUB directory."""
        unzip_dir = Path(unzip_dir)
        root_path = read_root_path(unzip_dir)
        base_dir = package_base_dir(unzip_dir, root_path)

        package = parse_package_document(unzip_dir / root_path)
        package.base_path = str(base_dir)
        package.cover = resolve_cover(package, base_dir)

        missing = package.missing_spine_refs()
        if missing:
            logger.warning(f"{len(missing)} spine reference(s) missing from manifest: {missing}")

        logger.info(f"Parsed package {root_path}: {package.spine_length} spine items, "
                    f"{len(package.manifest)} manifest items")
        return package

    def public_path(self, disk_path: str) -> str:
        """Map a path under the upload directory to its public URL."""
        if not disk_path:
            return ""
        try:
            relative = Path(disk_path).relative_to(self.upload_root)
        except ValueError:
            return str(disk_path)
        return f"{self.public_prefix}/{relative.as_posix()}"

    def store(self, owner_id: int, filename: str, package: EPUBPackage) -> None:
        """Cache the package graph and reset the reading position to page 1."""
        def key(field: CacheField) -> CacheKey:
            return CacheKey(owner_id, filename, field)

        self.cache.set(key(CacheField.PACKAGE), package.to_json())
        self.cache.set(key(CacheField.TOTAL_PAGES), package.spine_length)
        self.cache.set(key(CacheField.CURRENT_PAGE), 1)
        self.cache.set(key(CacheField.CURRENT_FRAGMENT), 0)
        self.cache.set(key(CacheField.PACKAGE_PATH), self.public_path(package.base_path))

    def load_cached(self, owner_id: int, filename: str) -> Optional[EPUBPackage]:
        """Cached package for a book, or None when missing or unreadable."""
        raw = self.cache.get(CacheKey(owner_id, filename, CacheField.PACKAGE))
        if raw is None:
            return None
        try:
            return EPUBPackage.from_json(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"Corrupt cached package for {filename}: {e}")
            return None
