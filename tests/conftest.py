"""
Shared fixtures: a temporary library, a stand-in for the external tools,
an in-memory index backend and an EPUB archive builder.
"""

import io
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from readshelf.config import ReadShelfConfig
from readshelf.exceptions import IndexWriteError, ToolExecutionError
from readshelf.library import Library
from readshelf.search.base import BookDetail, BookInfo, IndexBackend, SearchResult
from readshelf.services.tasks import TaskRunner
from readshelf.services.tools import COVER_SUFFIX, ExternalToolRunner, PDFInfo


CONTAINER_XML = """<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{root_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

OPF_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    {metadata}
  </metadata>
  <manifest>
    {manifest}
  </manifest>
  <spine toc="ncx">
    {spine}
  </spine>
</package>
"""

CHAPTER_XHTML = """<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml"><body><p>{text}</p></body></html>
"""

COVER_XHTML = """<html><body><div><img alt="cover" src="images/cover.jpg"/></div></body></html>
"""


def build_epub(path: Path, chapters: int = 4, title: str = "A Tale",
               author: str = "Someone", with_cover: bool = False,
               dangling_ref: Optional[str] = None, root_dir: str = "OEBPS") -> Path:
    """Write a minimal EPUB archive with `chapters` spine entries."""
    root_path = f"{root_dir}/content.opf" if root_dir else "content.opf"
    prefix = f"{root_dir}/" if root_dir else ""

    metadata = []
    if title:
        metadata.append(f"<dc:title>{title}</dc:title>")
    if author:
        metadata.append(f"<dc:creator>{author}</dc:creator>")

    manifest = []
    spine = []
    files: Dict[str, str] = {}

    if with_cover:
        manifest.append('<item id="cover" href="cover.xhtml" media-type="application/xhtml+xml"/>')
        manifest.append('<item id="cover-image" href="images/cover.jpg" media-type="image/jpeg"/>')
        spine.append('<itemref idref="cover"/>')
        files[prefix + "cover.xhtml"] = COVER_XHTML
        files[prefix + "images/cover.jpg"] = "JPEGDATA"

    for i in range(1, chapters + 1):
        manifest.append(f'<item id="ch{i}" href="ch{i}.xhtml" media-type="application/xhtml+xml"/>')
        spine.append(f'<itemref idref="ch{i}"/>')
        files[prefix + f"ch{i}.xhtml"] = CHAPTER_XHTML.format(text=f"Chapter {i} text")

    if dangling_ref:
        spine.append(f'<itemref idref="{dangling_ref}"/>')

    opf = OPF_TEMPLATE.format(
        metadata="\n    ".join(metadata),
        manifest="\n    ".join(manifest),
        spine="\n    ".join(spine),
    )

    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("mimetype", "application/epub+zip")
        archive.writestr("META-INF/container.xml", CONTAINER_XML.format(root_path=root_path))
        archive.writestr(root_path, opf)
        for name, content in files.items():
            archive.writestr(name, content)
    return path


class FakeToolRunner(ExternalToolRunner):
    """ExternalToolRunner that fakes poppler and unzips with zipfile."""

    def __init__(self, info: Optional[PDFInfo] = None, cover: bool = True,
                 split_count: Optional[int] = None, cover_error: bool = False):
        super().__init__()
        self.info = info or PDFInfo(title="", author="", pages="3")
        self.cover = cover
        self.cover_error = cover_error
        self.split_count = split_count
        self.calls: List[str] = []
        self.split_dirs: List[Path] = []

    def extract_info(self, pdf_path):
        self.calls.append("pdfinfo")
        return self.info

    def rasterize_cover(self, pdf_path, cover_root):
        self.calls.append("pdfimages")
        if self.cover_error:
            raise ToolExecutionError("pdfimages", "exited with status 1: broken")
        if not self.cover:
            return None
        cover_root = Path(cover_root)
        cover_root.parent.mkdir(parents=True, exist_ok=True)
        image = cover_root.parent / (cover_root.name + COVER_SUFFIX)
        image.write_bytes(b"PNG")
        return image

    def split_pages(self, pdf_path, output_dir):
        self.calls.append("pdfseparate")
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        self.split_dirs.append(output_dir)
        count = self.split_count if self.split_count is not None else int(self.info.pages)
        pages = []
        for page in range(1, count + 1):
            page_file = output_dir / f"{page}.pdf"
            page_file.write_bytes(f"%PDF page {page}".encode())
            pages.append(page_file)
        return pages

    def unzip_archive(self, archive_path, destination):
        self.calls.append("unzip")
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_path) as archive:
            archive.extractall(destination)
        return destination


class RecordingBackend(IndexBackend):
    """In-memory index that records every write."""

    def __init__(self, detail: bool = True, failing_pages=()):
        self.detail = detail
        self.failing_pages = set(failing_pages)
        self.info: Dict[str, BookInfo] = {}
        self.details: Dict[str, BookDetail] = {}
        self.detail_updates: List[str] = []
        self.deleted_details: List[str] = []
        self.closed = False

    @property
    def name(self):
        return "recording"

    @property
    def supports_detail_search(self):
        return self.detail

    def index_info(self, doc):
        self.info[doc.doc_id] = doc

    def update_info(self, doc):
        self.info[doc.doc_id] = doc

    def delete_info(self, owner_id, book_id):
        self.info.pop(f"{owner_id}_{book_id}", None)

    def index_detail(self, doc):
        if doc.page in self.failing_pages:
            raise IndexWriteError(f"page {doc.page} rejected")
        self.details[doc.doc_id] = doc

    def update_detail(self, info, page):
        self.detail_updates.append(f"{info.owner_id}_{info.book_id}_{page}")

    def delete_detail(self, owner_id, book_id, page):
        doc_id = f"{owner_id}_{book_id}_{page}"
        self.deleted_details.append(doc_id)
        self.details.pop(doc_id, None)

    def query(self, term, limit=50):
        term = term.lower()
        hits = [
            doc for doc in self.info.values()
            if term in doc.title.lower() or term in doc.author.lower()
        ]
        return SearchResult(book_info=hits[:limit])

    def close(self):
        self.closed = True


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    path = Path(tempfile.mkdtemp())
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def config(temp_dir):
    """Configuration rooted at a temporary library directory."""
    return ReadShelfConfig.for_library(temp_dir)


@pytest.fixture
def tool_runner():
    return FakeToolRunner()


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def library(config, tool_runner, backend):
    """Library wired to the fake tools and recording index, running tasks inline."""
    lib = Library.open(
        config,
        runner=tool_runner,
        backend=backend,
        tasks=TaskRunner(synchronous=True),
    )
    yield lib
    lib.close()


@pytest.fixture
def epub_file(temp_dir):
    """Factory writing EPUB archives into the temporary directory."""
    def make(name: str = "A Tale.epub", **options) -> Path:
        source = temp_dir / "source"
        source.mkdir(exist_ok=True)
        return build_epub(source / name, **options)
    return make


@pytest.fixture
def pdf_bytes():
    return io.BytesIO(b"%PDF-1.4 fake document")
