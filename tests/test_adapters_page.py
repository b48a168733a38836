import pytest

from corpus_rag.adapters.base import CorpusContext
from corpus_rag.adapters.page import ActivePageAdapter, PageTextVisitor
from corpus_rag.errors import AdapterError

from conftest import el, frame, page, text


def _rich_page():
    return page(
        el("h1", text("Title")),
        el("p", text("Visible text.")),
        el("script", text("var x = 1;")),
        el("div", el("p", text("Secret")), hidden=True),
        el("div", text("Nope"), style={"display": "none"}),
        el("span", text("Ghost"), style={"visibility": "hidden"}),
        el("div", shadow_root=el("p", text("Shadow text"))),
        el("iframe", frame=frame("https://example.com", el("p", text("Frame text")))),
        el("iframe", frame=frame("https://ads.example.net", el("p", text("Other origin")))),
    )


@pytest.mark.asyncio
async def test_full_depth_keeps_visible_shadow_and_same_origin_frames():
    adapter = ActivePageAdapter(capture_depth="all")
    [doc] = await adapter.list_documents(CorpusContext(snapshot=_rich_page()))

    assert doc.id == "https://example.com/"
    assert doc.title == "Example"
    assert doc.source_kind == "page"
    assert doc.text.startswith("# Title\nVisible text.")
    for seen in ("Shadow text", "Frame text"):
        assert seen in doc.text
    for unseen in ("var x", "Secret", "Nope", "Ghost", "Other origin"):
        assert unseen not in doc.text
    assert doc.headings == ["Title"]
    assert doc.extra["skipped_iframes"] == 1


@pytest.mark.parametrize(
    "depth, shadow, framed",
    [("document", False, False), ("shadow", True, False), ("all", True, True)],
)
def test_capture_depth_controls_traversal(depth, shadow, framed):
    snap = _rich_page()
    visitor = PageTextVisitor(snap.origin, depth)
    body, _ = visitor.render(snap.root)
    assert ("Shadow text" in body) is shadow
    assert ("Frame text" in body) is framed
    assert visitor.skipped_iframes == 1


def test_heading_levels_render_as_markdown():
    snap = page(el("h2", text("Setup")), el("p", text("Install it.")), el("h3", el("span", text("Details"))))
    body, headings = PageTextVisitor(snap.origin).render(snap.root)
    assert body == "## Setup\nInstall it.\n\n### Details"
    assert headings == ["Setup", "Details"]


@pytest.mark.asyncio
async def test_blank_page_gives_one_empty_document():
    docs = await ActivePageAdapter().list_documents(CorpusContext(snapshot=page()))
    assert len(docs) == 1
    assert docs[0].text == ""


@pytest.mark.asyncio
async def test_capture_is_called_without_a_snapshot():
    seen = []

    async def capture(url=None):
        seen.append(url)
        return page(el("p", text("Captured")), url="https://x.test/")

    adapter = ActivePageAdapter(capture)
    [doc] = await adapter.list_documents(CorpusContext(url="https://x.test/"))
    assert seen == ["https://x.test/"]
    assert doc.text == "Captured"


@pytest.mark.asyncio
async def test_capture_failure_is_an_adapter_error():
    async def capture(url=None):
        raise RuntimeError("tab closed")

    with pytest.raises(AdapterError) as exc:
        await ActivePageAdapter(capture).list_documents(CorpusContext())
    assert exc.value.source == "page"
    assert "tab closed" in str(exc.value)


@pytest.mark.asyncio
async def test_missing_capture_is_an_adapter_error():
    with pytest.raises(AdapterError):
        await ActivePageAdapter().list_documents(CorpusContext())


def test_index_key_and_plain_chunk_ids():
    adapter = ActivePageAdapter()
    assert adapter.get_index_key(CorpusContext(url="https://x.test/")) == "page:https://x.test/"
    assert adapter.get_index_key(CorpusContext()) == "page:active"


@pytest.mark.asyncio
async def test_page_chunks_are_not_namespaced():
    adapter = ActivePageAdapter()
    [doc] = await adapter.list_documents(CorpusContext(snapshot=page(el("p", text("Hello World")))))
    chunks = adapter.chunk_document(doc)
    assert [c.id for c in chunks] == ["chunk-0"]
    assert chunks[0].doc_id == doc.id
