"""
External document-processing tools.

Wraps the poppler utilities (pdfinfo, pdfimages, pdfseparate) and unzip.
Every call blocks until the process exits; no timeout is enforced.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence
import logging
import subprocess

from ..config import ToolsConfig
from ..exceptions import ToolExecutionError

logger = logging.getLogger(__name__)

COVER_SUFFIX = "-001-000.png"


@dataclass
class PDFInfo:
    """Fields scanned from pdfinfo output; missing fields are empty strings."""
    title: str = ""
    author: str = ""
    pages: str = ""


def scan_field(lines: Sequence[str], prefix: str) -> str:
    """Return the value of the first "Prefix: value" line, or ""."""
    for line in lines:
        if line.startswith(prefix):
            return line.split(":", 1)[1].strip() if ":" in line else ""
    return ""


class ExternalToolRunner:
    """Runs external utilities with explicit argument lists (no shell)."""

    def __init__(self, config: Optional[ToolsConfig] = None):
        self.config = config or ToolsConfig()

    def _run(self, args: List[str]) -> str:
        """
        Run a command and return its standard output.

        Raises:
            ToolExecutionError: Missing binary or nonzero exit status
        """
        tool = args[0]
        logger.debug(f"Running {' '.join(args)}")
        try:
            result = subprocess.run(
                args, capture_output=True, text=True, errors='replace', check=False
            )
        except FileNotFoundError:
            raise ToolExecutionError(tool, "executable not found")
        except OSError as e:
            raise ToolExecutionError(tool, str(e))

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ToolExecutionError(
                tool, f"exited with status {result.returncode}: {stderr}", result.returncode
            )

        return result.stdout or ""

    def extract_info(self, pdf_path: Path) -> PDFInfo:
        """Read title, author and page count from pdfinfo."""
        output = self._run([self.config.pdfinfo, str(pdf_path)])
        lines = output.splitlines()
        return PDFInfo(
            title=scan_field(lines, "Title:"),
            author=scan_field(lines, "Author:"),
            pages=scan_field(lines, "Pages:"),
        )

    def rasterize_cover(self, pdf_path: Path, cover_root: Path) -> Optional[Path]:
        """
        Extract images from the first pages as the cover.

        Args:
            pdf_path: Source PDF
            cover_root: Output prefix; pdfimages appends -PPP-NNN.png

        Returns:
            Path of the first image of page 1, or None if none was written
        """
        cover_root = Path(cover_root)
        cover_root.parent.mkdir(parents=True, exist_ok=True)
        self._run([
            self.config.pdfimages, "-p", "-png", "-f", "1", "-l", "2",
            str(pdf_path), str(cover_root)
        ])

        expected = cover_root.parent / (cover_root.name + COVER_SUFFIX)
        if expected.exists():
            return expected
        logger.info(f"No cover image produced for {pdf_path.name}")
        return None

    def split_pages(self, pdf_path: Path, output_dir: Path) -> List[Path]:
        """
        Split a PDF into one file per page (1.pdf, 2.pdf, ...).

        Returns once the process has exited, so every page file is present.

        Returns:
            Page files sorted by page number
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        self._run([self.config.pdfseparate, str(pdf_path), str(output_dir / "%d.pdf")])

        pages = [p for p in output_dir.glob("*.pdf") if p.stem.isdigit()]
        return sorted(pages, key=lambda p: int(p.stem))

    def unzip_archive(self, archive_path: Path, destination: Path) -> Path:
        """Extract an archive (EPUB) into destination, overwriting existing files."""
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        self._run([self.config.unzip, "-o", "-q", str(archive_path), "-d", str(destination)])
        return destination
