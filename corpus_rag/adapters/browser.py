from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Protocol

from ..config import BrowserListConfig, HistoryConfig
from ..errors import AdapterError
from ..index.schema import Document
from ..utils.hashing import djb2
from .base import ChunkOptions, CorpusAdapter, CorpusContext

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
KEY_QUERY_CHARS = 32


class BrowserDataProvider(Protocol):
    """
    Browser data surface. Items are plain dicts; timestamps are epoch seconds.

    history:   {id, title, url, last_visit_time}
    bookmarks: {id, title, url, date_added}
    downloads: {id, filename, url, start_time, end_time}
    """

    async def ensure_permission(self, name: str) -> bool:
        ...

    async def search_history(self, text: str, start_time: float, max_results: int) -> List[Dict[str, Any]]:
        ...

    async def search_bookmarks(self, text: str, max_results: int) -> List[Dict[str, Any]]:
        ...

    async def search_downloads(self, max_results: int) -> List[Dict[str, Any]]:
        ...


def _get(item: Dict[str, Any], *names: str) -> Any:
    for n in names:
        v = item.get(n)
        if v not in (None, ""):
            return v
    return None


def _num(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class _BrowserAdapter(CorpusAdapter):
    """Shared permission gate and call wrapping for metadata-only corpora."""

    permission = ""
    default_chunking = ChunkOptions(max_chunk_chars=1000, overlap_chars=0, min_chunk_chars=200)

    def __init__(self, provider: BrowserDataProvider) -> None:
        self.provider = provider

    async def _require_permission(self) -> None:
        try:
            granted = await self.provider.ensure_permission(self.permission)
        except Exception as err:  # noqa: BLE001
            raise AdapterError(f"{self.permission} permission check failed: {err}", source=self.kind) from err
        if not granted:
            raise AdapterError(f"{self.permission} permission not granted", source=self.kind, code="PERMISSION_DENIED")

    async def _call(self, what: str, coro: Any) -> List[Dict[str, Any]]:
        try:
            items = await coro
        except Exception as err:  # noqa: BLE001
            raise AdapterError(f"{what} search failed: {err}", source=self.kind) from err
        return [it for it in (items or []) if isinstance(it, dict)]

    def _doc(self, item: Dict[str, Any], title: str, created: float, updated: Optional[float]) -> Document:
        url = str(_get(item, "url") or "")
        body = f"{title}\n{url}"
        doc_id = str(_get(item, "id") or url or djb2(body))
        return Document(
            id=doc_id,
            title=title,
            url=url or None,
            created_at=created,
            updated_at=updated,
            text=body,
            size_bytes=len(body.encode("utf-8")),
            source_kind=self.source_kind,
        )


class HistoryAdapter(_BrowserAdapter):
    kind = "history"
    source_kind = "history"
    permission = "history"

    def __init__(self, provider: BrowserDataProvider, defaults: Optional[HistoryConfig] = None) -> None:
        super().__init__(provider)
        self.defaults = defaults or HistoryConfig()

    def _window(self, context: CorpusContext) -> tuple[int, int]:
        days = context.days or self.defaults.days
        max_results = context.max_results or self.defaults.max_results
        return int(days), int(max_results)

    def get_index_key(self, context: CorpusContext) -> str:
        days, max_results = self._window(context)
        q = (context.text or "")[:KEY_QUERY_CHARS]
        return f"history:days={days}:max={max_results}:q={q}"

    async def list_documents(self, context: CorpusContext) -> List[Document]:
        await self._require_permission()
        days, max_results = self._window(context)
        now = time.time()
        items = await self._call(
            "history",
            self.provider.search_history(context.text or "", now - days * DAY_SECONDS, max_results),
        )
        docs = []
        for it in items:
            title = str(_get(it, "title", "url") or "Untitled")
            visited = _num(_get(it, "last_visit_time", "lastVisitTime"), now)
            docs.append(self._doc(it, title, visited, visited))
        return self.apply_limits(docs, context)


class BookmarksAdapter(_BrowserAdapter):
    kind = "bookmarks"
    source_kind = "bookmark"
    permission = "bookmarks"

    def __init__(self, provider: BrowserDataProvider, defaults: Optional[BrowserListConfig] = None) -> None:
        super().__init__(provider)
        self.defaults = defaults or BrowserListConfig()

    def get_index_key(self, context: CorpusContext) -> str:
        max_results = context.max_results or self.defaults.max_results
        return f"bookmarks:max={max_results}:q={(context.text or '')[:KEY_QUERY_CHARS]}"

    async def list_documents(self, context: CorpusContext) -> List[Document]:
        await self._require_permission()
        max_results = int(context.max_results or self.defaults.max_results)
        now = time.time()
        items = await self._call("bookmarks", self.provider.search_bookmarks(context.text or "", max_results))
        docs = []
        for it in items:
            if not _get(it, "url"):
                continue  # folders
            title = str(_get(it, "title", "url") or "Untitled")
            added = _num(_get(it, "date_added", "dateAdded"), now)
            docs.append(self._doc(it, title, added, None))
        return self.apply_limits(docs, context)


class DownloadsAdapter(_BrowserAdapter):
    kind = "downloads"
    source_kind = "download"
    permission = "downloads"
    default_chunking = ChunkOptions(max_chunk_chars=600, overlap_chars=0, min_chunk_chars=200)

    def __init__(self, provider: BrowserDataProvider, defaults: Optional[BrowserListConfig] = None) -> None:
        super().__init__(provider)
        self.defaults = defaults or BrowserListConfig()

    def get_index_key(self, context: CorpusContext) -> str:
        max_results = context.max_results or self.defaults.max_results
        return f"downloads:max={max_results}:q={(context.text or '')[:KEY_QUERY_CHARS]}"

    async def list_documents(self, context: CorpusContext) -> List[Document]:
        await self._require_permission()
        max_results = int(context.max_results or self.defaults.max_results)
        needle = (context.text or "").lower()
        now = time.time()
        items = await self._call("downloads", self.provider.search_downloads(max_results))
        docs = []
        for it in items:
            filename = str(_get(it, "filename") or "")
            url = str(_get(it, "url") or "")
            if needle and needle not in filename.lower() and needle not in url.lower():
                continue
            started = _num(_get(it, "start_time", "startTime"), now)
            ended = _num(_get(it, "end_time", "endTime"), started)
            docs.append(self._doc(it, filename or "Downloaded file", started, ended))
        return self.apply_limits(docs, context)
