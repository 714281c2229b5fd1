"""
Services for the readshelf ingestion and navigation engine.
"""

from .tools import ExternalToolRunner, PDFInfo
from .epub_package import EPUBPackage, EPUBPackageResolver, ManifestItem
from .navigation import NavigationStateMachine, HrefData, CurrentPageData
from .ingestion import IngestionPipeline, normalize_filename
from .tasks import TaskRunner

__all__ = [
    # External processes
    'ExternalToolRunner',
    'PDFInfo',

    # EPUB structure and reading position
    'EPUBPackage',
    'EPUBPackageResolver',
    'ManifestItem',
    'NavigationStateMachine',
    'HrefData',
    'CurrentPageData',

    # Uploads
    'IngestionPipeline',
    'normalize_filename',
    'TaskRunner',
]
