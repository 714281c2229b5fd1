"""
Remote clustered search index (Elasticsearch HTTP API).

Documents live in two collections of one index: book_info ({owner}_{book})
and book_detail ({owner}_{book}_{page}). Detail documents are written
through the "attachment" ingest pipeline, which turns the base64 content
into searchable text server-side.
"""

from typing import Any, Dict, Optional
import json
import logging

import httpx

from ..exceptions import IndexQueryError, IndexWriteError
from .base import (
    BookDetail, BookDetailHit, BookInfo, IndexBackend, SearchResult,
    detail_doc_id, info_doc_id, parse_doc_id
)

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}
INFO_COLLECTION = "book_info"
DETAIL_COLLECTION = "book_detail"
CONTENT_FIELD = "attachment.content"

INFO_SOURCE_FIELDS = ["title", "author", "url", "cover", "owner_id", "book_id"]
DETAIL_SOURCE_FIELDS = ["title", "author", "url", "se_url", "cover", "page", "format", "owner_id", "book_id"]


class RemoteIndexBackend(IndexBackend):
    """
    Elasticsearch-backed index reached over HTTP.

    Supports:
    - Whole-book search over title and author
    - Phrase search over page content with highlighted snippets
    """

    def __init__(
        self,
        base_url: str,
        index_name: str = "lr_index",
        timeout: float = 10.0,
        fragment_size: int = 150,
        number_of_fragments: int = 3,
        no_match_size: int = 150,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the backend.

        Args:
            base_url: Cluster address, e.g. http://localhost:9200
            index_name: Index holding both collections
            timeout: Per-request timeout in seconds
            client: Preconfigured httpx client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.index_name = index_name
        self.highlight = {
            "fragment_size": fragment_size,
            "number_of_fragments": number_of_fragments,
            "no_match_size": no_match_size,
        }
        self._client = client or httpx.Client(timeout=timeout, headers=JSON_HEADERS)

    @property
    def name(self) -> str:
        return "remote"

    @property
    def supports_detail_search(self) -> bool:
        return True

    def _url(self, collection: str, *parts: str) -> str:
        return "/".join([self.base_url, self.index_name, collection, *parts])

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, str]] = None) -> httpx.Response:
        body = json.dumps(payload) if payload is not None else None
        logger.debug(f"{method} {url}")
        return self._client.request(method, url, content=body, params=params, headers=JSON_HEADERS)

    def _write(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None,
               params: Optional[Dict[str, str]] = None, missing_ok: bool = False) -> None:
        try:
            response = self._request(method, url, payload, params)
            if missing_ok and response.status_code == 404:
                return
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IndexWriteError(f"{method} {url} failed: {e}")

    def _search(self, collection: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self._url(collection, "_search")
        try:
            response = self._request("GET", url, payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise IndexQueryError(f"Search on {collection} failed: {e}")
        except ValueError as e:
            raise IndexQueryError(f"Unreadable search response from {collection}: {e}")

    def index_info(self, doc: BookInfo) -> None:
        self._write("PUT", self._url(INFO_COLLECTION, doc.doc_id), doc.to_source())

    def update_info(self, doc: BookInfo) -> None:
        payload = {"doc": {"title": doc.title, "author": doc.author, "cover": doc.cover}}
        self._write("POST", self._url(INFO_COLLECTION, doc.doc_id, "_update"), payload)

    def delete_info(self, owner_id: int, book_id: int) -> None:
        self._write("DELETE", self._url(INFO_COLLECTION, info_doc_id(owner_id, book_id)), missing_ok=True)

    def index_detail(self, doc: BookDetail) -> None:
        self._write(
            "PUT", self._url(DETAIL_COLLECTION, doc.doc_id), doc.to_source(),
            params={"pipeline": "attachment"}
        )

    def update_detail(self, info: BookInfo, page: int) -> None:
        payload = {"doc": {"title": info.title, "author": info.author, "cover": info.cover}}
        doc_id = detail_doc_id(info.owner_id, info.book_id, page)
        self._write("POST", self._url(DETAIL_COLLECTION, doc_id, "_update"), payload)

    def delete_detail(self, owner_id: int, book_id: int, page: int) -> None:
        doc_id = detail_doc_id(owner_id, book_id, page)
        self._write("DELETE", self._url(DETAIL_COLLECTION, doc_id), missing_ok=True)

    def _info_hit(self, hit: Dict[str, Any]) -> BookInfo:
        source = hit.get("_source", {})
        owner_id, book_id = source.get("owner_id"), source.get("book_id")
        if owner_id is None or book_id is None:
            owner_id, book_id = parse_doc_id(hit.get("_id", ""))[:2]
        return BookInfo(
            owner_id=int(owner_id),
            book_id=int(book_id),
            title=source.get("title", ""),
            author=source.get("author", ""),
            cover=source.get("cover", ""),
            url=source.get("url", ""),
        )

    def _detail_hit(self, hit: Dict[str, Any]) -> BookDetailHit:
        source = hit.get("_source", {})
        owner_id, book_id = source.get("owner_id"), source.get("book_id")
        page = source.get("page")
        if owner_id is None or book_id is None or page is None:
            owner_id, book_id, page = parse_doc_id(hit.get("_id", ""))
        return BookDetailHit(
            owner_id=int(owner_id),
            book_id=int(book_id),
            page=int(page),
            title=source.get("title", ""),
            author=source.get("author", ""),
            url=source.get("url", ""),
            cover=source.get("cover", ""),
            format=source.get("format", ""),
            se_url=source.get("se_url", ""),
            highlights=list(hit.get("highlight", {}).get(CONTENT_FIELD, [])),
        )

    def _hits(self, result: Dict[str, Any], convert) -> list:
        hits = []
        for hit in result.get("hits", {}).get("hits", []):
            try:
                hits.append(convert(hit))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping unparseable hit {hit.get('_id')}: {e}")
        return hits

    def query(self, term: str, limit: int = 50) -> SearchResult:
        info_payload = {
            "size": limit,
            "_source": INFO_SOURCE_FIELDS,
            "query": {"multi_match": {"query": term, "fields": ["title", "author"]}},
        }
        detail_payload = {
            "size": limit,
            "_source": DETAIL_SOURCE_FIELDS,
            "query": {"match_phrase": {CONTENT_FIELD: term}},
            "highlight": {"fields": {CONTENT_FIELD: dict(self.highlight)}},
        }

        info = self._search(INFO_COLLECTION, info_payload)
        detail = self._search(DETAIL_COLLECTION, detail_payload)

        return SearchResult(
            book_info=self._hits(info, self._info_hit),
            book_detail=self._hits(detail, self._detail_hit),
        )

    def close(self) -> None:
        self._client.close()
