import time

import pytest

from corpus_rag.adapters.base import CorpusContext
from corpus_rag.adapters.browser import BookmarksAdapter, DownloadsAdapter, HistoryAdapter
from corpus_rag.config import HistoryConfig
from corpus_rag.errors import AdapterError

from conftest import FakeBrowser


class TestHistory:
    @pytest.fixture
    def provider(self):
        return FakeBrowser(
            history=[
                {"id": "h1", "title": "Rust book", "url": "https://doc.rust-lang.org/book/", "last_visit_time": 50},
                {"id": "h2", "url": "https://example.com/"},
            ]
        )

    @pytest.mark.asyncio
    async def test_documents_carry_title_and_url(self, provider):
        docs = await HistoryAdapter(provider).list_documents(CorpusContext())
        assert [d.id for d in docs] == ["h1", "h2"]
        assert docs[0].text == "Rust book\nhttps://doc.rust-lang.org/book/"
        assert docs[0].created_at == 50
        assert docs[1].title == "https://example.com/"
        assert all(d.source_kind == "history" for d in docs)

    @pytest.mark.asyncio
    async def test_window_is_passed_to_provider(self, provider):
        before = time.time()
        await HistoryAdapter(provider, HistoryConfig(days=7)).list_documents(CorpusContext(days=3, text="rust"))
        _, text, start, max_results = [c for c in provider.calls if c[0] == "history"][0]
        assert text == "rust"
        assert max_results == 300
        assert abs((before - start) - 3 * 86400) < 5

    def test_index_key(self, provider):
        adapter = HistoryAdapter(provider)
        assert adapter.get_index_key(CorpusContext()) == "history:days=7:max=300:q="
        assert adapter.get_index_key(CorpusContext(days=3, text="Foo")) == "history:days=3:max=300:q=Foo"

    @pytest.mark.asyncio
    async def test_permission_denied(self):
        adapter = HistoryAdapter(FakeBrowser(granted=False))
        with pytest.raises(AdapterError) as exc:
            await adapter.list_documents(CorpusContext())
        assert exc.value.code == "PERMISSION_DENIED"
        assert exc.value.source == "history"

    @pytest.mark.asyncio
    async def test_search_failure(self):
        adapter = HistoryAdapter(FakeBrowser(fail=RuntimeError("boom")))
        with pytest.raises(AdapterError, match="boom"):
            await adapter.list_documents(CorpusContext())


@pytest.mark.asyncio
async def test_bookmarks_skip_folders():
    provider = FakeBrowser(
        bookmarks=[
            {"id": "f1", "title": "Folder"},
            {"id": "b1", "title": "Docs", "url": "https://docs.test/", "date_added": 7},
        ]
    )
    adapter = BookmarksAdapter(provider)
    docs = await adapter.list_documents(CorpusContext())
    assert [d.id for d in docs] == ["b1"]
    assert docs[0].source_kind == "bookmark"
    assert adapter.get_index_key(CorpusContext(max_results=5)) == "bookmarks:max=5:q="


@pytest.mark.asyncio
async def test_downloads_filter_locally_and_chunk_small():
    provider = FakeBrowser(
        downloads=[
            {"id": "d1", "filename": "/tmp/report.pdf", "url": "https://files.test/report.pdf", "start_time": 1},
            {"id": "d2", "filename": "/tmp/photo.jpg", "url": "https://img.test/photo.jpg"},
        ]
    )
    adapter = DownloadsAdapter(provider)
    docs = await adapter.list_documents(CorpusContext(text="REPORT"))
    assert [d.id for d in docs] == ["d1"]
    assert docs[0].title == "/tmp/report.pdf"
    assert adapter.default_chunking.max_chunk_chars == 600
    assert [c.id for c in adapter.chunk_document(docs[0])] == ["d1::chunk-0"]
