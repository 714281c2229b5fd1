"""
Exception hierarchy for readshelf.

Ingestion errors abort the upload of a single file. Index and navigation
errors are raised internally and mostly degrade to logged warnings or
zero-valued results at the library boundary.
"""


class ReadShelfError(Exception):
    """Base class for all readshelf errors."""
    pass


class IngestionError(ReadShelfError):
    """An uploaded file could not be ingested."""
    pass


class UnsupportedFormatError(IngestionError):
    """The declared content type is neither PDF nor EPUB."""

    def __init__(self, content_type: str):
        self.content_type = content_type
        super().__init__(f"Unsupported content type: {content_type}")


class DuplicateBookError(IngestionError):
    """The owner already has a book with this filename."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"{filename} already exists")


class InvalidPageCountError(IngestionError):
    """The page count reported for a PDF is missing or not a positive integer."""

    def __init__(self, filename: str, raw_value: str):
        self.filename = filename
        self.raw_value = raw_value
        super().__init__(f"Invalid page count {raw_value!r} for {filename}")


class MalformedPackageError(IngestionError):
    """The EPUB container or OPF package document is structurally broken."""
    pass


class ToolExecutionError(ReadShelfError):
    """An external tool is missing, failed, or produced no usable output."""

    def __init__(self, tool: str, message: str, returncode: int = None):
        self.tool = tool
        self.returncode = returncode
        super().__init__(f"{tool}: {message}")


class IndexBackendError(ReadShelfError):
    """Base class for search index failures."""
    pass


class IndexWriteError(IndexBackendError):
    """Writing or deleting an index document failed."""
    pass


class IndexQueryError(IndexBackendError):
    """Querying the index failed."""
    pass


class NavigationResolutionError(ReadShelfError):
    """A spine or manifest lookup did not match."""
    pass


class BookNotFoundError(ReadShelfError):
    """No book with the given owner and filename exists."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Book not found: {filename}")
