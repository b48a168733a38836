from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..config import AppConfig
from ..errors import ValidationError
from .base import CorpusAdapter
from .browser import BookmarksAdapter, BrowserDataProvider, DownloadsAdapter, HistoryAdapter
from .notes import KeyValueStore, NotesAdapter
from .page import ActivePageAdapter, PageCapture
from .pills import PillContextAdapter


class AdapterRegistry:
    """Corpus kind -> adapter. Built once, then read-only."""

    def __init__(self, adapters: Iterable[CorpusAdapter] = ()) -> None:
        self._adapters: Dict[str, CorpusAdapter] = {}
        for a in adapters:
            self.register(a)

    def register(self, adapter: CorpusAdapter, kind: Optional[str] = None) -> None:
        name = (kind or adapter.kind).strip().lower()
        if not name:
            raise ValidationError("Adapter has no corpus kind.", field="kind")
        self._adapters[name] = adapter

    def get(self, kind: str) -> CorpusAdapter:
        adapter = self._adapters.get((kind or "").strip().lower())
        if adapter is None:
            raise ValidationError(f"Unsupported corpus: {kind!r}", field="corpus")
        return adapter

    def kinds(self) -> List[str]:
        return sorted(self._adapters)

    def __contains__(self, kind: str) -> bool:
        return (kind or "").strip().lower() in self._adapters

    @classmethod
    def default(
        cls,
        cfg: AppConfig,
        *,
        page_capture: Optional[PageCapture] = None,
        notes_store: Optional[KeyValueStore] = None,
        browser: Optional[BrowserDataProvider] = None,
    ) -> "AdapterRegistry":
        """Register every adapter whose provider is available; pills need none."""
        reg = cls([PillContextAdapter()])
        reg.register(ActivePageAdapter(page_capture, cfg.adapters.page.capture_depth))
        if notes_store is not None:
            reg.register(NotesAdapter(notes_store))
        if browser is not None:
            reg.register(HistoryAdapter(browser, cfg.adapters.history))
            reg.register(BookmarksAdapter(browser, cfg.adapters.bookmarks))
            reg.register(DownloadsAdapter(browser, cfg.adapters.downloads))
        return reg
