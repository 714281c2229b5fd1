"""
Search index backends for readshelf.

Two interchangeable backends, selected once from configuration:
- LocalIndexBackend: embedded SQLite FTS5 file, whole-book search only
- RemoteIndexBackend: Elasticsearch over HTTP, with page content search
"""

from ..config import INDEX_BACKEND_LOCAL, INDEX_BACKEND_REMOTE, ReadShelfConfig
from .adapter import SearchIndexAdapter, detail_page_indices
from .base import (
    BookDetail, BookDetailHit, BookInfo, IndexBackend, SearchResult,
    detail_doc_id, info_doc_id, parse_doc_id
)
from .local import LocalIndexBackend
from .remote import RemoteIndexBackend


def create_backend(config: ReadShelfConfig) -> IndexBackend:
    """
    Build the index backend named by config.index.backend.

    Raises:
        ValueError: Unknown backend name
    """
    backend = config.index.backend
    if backend == INDEX_BACKEND_LOCAL:
        return LocalIndexBackend(config.local_index_path)
    if backend == INDEX_BACKEND_REMOTE:
        return RemoteIndexBackend(
            config.index.remote_url,
            index_name=config.index.index_name,
            timeout=config.index.timeout,
            fragment_size=config.index.fragment_size,
            number_of_fragments=config.index.number_of_fragments,
            no_match_size=config.index.no_match_size,
        )
    raise ValueError(f"Unknown index backend: {backend}")


__all__ = [
    'BookDetail',
    'BookDetailHit',
    'BookInfo',
    'IndexBackend',
    'LocalIndexBackend',
    'RemoteIndexBackend',
    'SearchIndexAdapter',
    'SearchResult',
    'create_backend',
    'detail_doc_id',
    'detail_page_indices',
    'info_doc_id',
    'parse_doc_id',
]
