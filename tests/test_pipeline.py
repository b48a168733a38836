import asyncio
import json

import pytest

from corpus_rag.adapters.base import CorpusContext
from corpus_rag.adapters.registry import AdapterRegistry
from corpus_rag.answer.compose import NO_SOURCES
from corpus_rag.config import AppConfig
from corpus_rag.errors import AdapterError, Cancelled, GeneratorUnavailable, ValidationError
from corpus_rag.pipeline import RetrievalPipeline, answer_confidence, build_pipeline
from corpus_rag.utils import events as ev
from corpus_rag.utils.cancel import CancellationToken
from llm.session import ModelSession

from conftest import (
    RERANK_MARKER,
    SUMMARY_MARKER,
    TRANSLATE_MARKER,
    FakeStore,
    ScriptedGenerator,
    el,
    page,
    text,
)

URL = "https://example.com/"


def _pipeline(generator=None, config=None, **providers):
    cfg = config or AppConfig()
    session = ModelSession(generator, cfg.generation.output_language)
    return RetrievalPipeline(AdapterRegistry.default(cfg, **providers), session, cfg)


def _hello_page():
    return CorpusContext(url=URL, snapshot=page(el("p", text("Hello World"))))


@pytest.mark.asyncio
async def test_empty_page_prompts_with_no_sources():
    pipeline = _pipeline(ScriptedGenerator())
    prepared = await pipeline.prepare("anything here?", "page", CorpusContext(snapshot=page()))

    index = prepared.index
    assert len(index.documents) == 1
    assert index.chunks == {}
    assert [(s.kind, s.text) for s in index.summaries] == [("global", "")]
    assert prepared.result.ref_ids == []
    assert NO_SOURCES in prepared.bundle.prompt
    assert "Question: anything here?" in prepared.bundle.prompt


@pytest.mark.asyncio
async def test_short_page_end_to_end():
    gen = ScriptedGenerator(pieces=["Hello ", "there."])
    pipeline = _pipeline(gen)
    got = []
    ans = await pipeline.answer("hello", "page", _hello_page(), on_chunk=got.append)

    [chunk] = (await pipeline.prepare("hello", "page", _hello_page())).index.chunks.values()
    assert (chunk.id, chunk.content, chunk.size_chars, chunk.index) == ("chunk-0", "Hello World", 11, 1)

    assert {"chunk-0", URL} & set(ans.ref_ids)
    assert ans.text == "Hello there."
    assert got == ["Hello ", "there."]
    assert [r.chunk_id for r in ans.used_refs] == ["chunk-0"]
    assert ans.confidence == "low"
    assert ans.language == "en"
    assert ans.translated is False
    assert ans.trace["corpus_key"] == f"page:{URL}"
    assert "total_ms" in ans.trace["timers_ms"]


@pytest.mark.asyncio
async def test_event_order():
    pipeline = _pipeline(ScriptedGenerator(pieces=["a", "b"]))
    seen = []
    pipeline.subscribe(seen.append)
    await pipeline.answer("hello", "page", _hello_page())

    types = [e.type for e in seen]
    expected = [ev.CAPTURE_START, ev.CHUNK_DONE, ev.SUMMARY_PROGRESS, ev.RETRIEVE_DONE, ev.PROMPT_READY, ev.ANSWER_CHUNK, ev.ANSWER_CHUNK, ev.ANSWER_DONE]
    assert types == expected
    assert all(e.corpus_key == f"page:{URL}" for e in seen)


@pytest.mark.asyncio
async def test_async_chunk_callback_is_awaited():
    pipeline = _pipeline(ScriptedGenerator(pieces=["x"]))
    got = []

    async def on_chunk(piece):
        got.append(piece)

    await pipeline.answer("hello", "page", _hello_page(), on_chunk=on_chunk)
    assert got == ["x"]


@pytest.mark.asyncio
async def test_missing_generator_fails_before_capture():
    calls = []

    async def capture(url=None):
        calls.append(url)
        return page()

    pipeline = _pipeline(None, page_capture=capture)
    with pytest.raises(GeneratorUnavailable):
        await pipeline.answer("hello", "page")
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("query, corpus", [("", "page"), ("   ", "page"), ("hello", "bookmarks"), ("hello", "nope")])
async def test_invalid_input(query, corpus):
    with pytest.raises(ValidationError):
        await _pipeline(ScriptedGenerator()).answer(query, corpus, _hello_page())


@pytest.mark.asyncio
async def test_adapter_errors_propagate():
    async def capture(url=None):
        raise RuntimeError("tab crashed")

    with pytest.raises(AdapterError):
        await _pipeline(ScriptedGenerator(), page_capture=capture).answer("hello", "page")


@pytest.mark.asyncio
async def test_second_call_hits_the_cache():
    gen = ScriptedGenerator()
    pipeline = _pipeline(gen)
    first = await pipeline.answer("hello", "page", _hello_page())
    summary_calls = gen.calls_with(SUMMARY_MARKER)
    second = await pipeline.answer("world", "page", _hello_page())

    assert first.trace["cache_hit"] is False
    assert second.trace["cache_hit"] is True
    assert gen.calls_with(SUMMARY_MARKER) == summary_calls


@pytest.mark.asyncio
async def test_changed_content_rebuilds():
    gen = ScriptedGenerator()
    pipeline = _pipeline(gen)
    await pipeline.answer("hello", "page", _hello_page())
    changed = CorpusContext(url=URL, snapshot=page(el("p", text("Hello again"))))
    ans = await pipeline.answer("hello", "page", changed)
    assert ans.trace["cache_hit"] is False


@pytest.mark.asyncio
async def test_cancelled_before_start():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(Cancelled):
        await _pipeline(ScriptedGenerator()).answer("hello", "page", _hello_page(), cancel=token)


@pytest.mark.asyncio
async def test_small_global_chunk_size_still_answers_page_queries():
    cfg = AppConfig.model_validate({"chunker": {"maxChunkChars": 800}})
    long_page = CorpusContext(url=URL, snapshot=page(el("p", text("hello world. " * 200))))
    prepared = await _pipeline(ScriptedGenerator(), cfg).prepare("hello", "page", long_page)
    assert len(prepared.index.chunks) > 1
    assert list(prepared.index.chunks.values())[0].size_chars <= 800


class _HeldSummaries(ScriptedGenerator):
    """Summary calls wait until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def prompt(self, text, *, output_language=None):
        if SUMMARY_MARKER in text:
            await self.release.wait()
        return await super().prompt(text, output_language=output_language)


@pytest.mark.asyncio
async def test_second_caller_times_out_while_first_builds():
    gen = _HeldSummaries()
    pipeline = _pipeline(gen)
    first = asyncio.create_task(pipeline.prepare("hello", "page", _hello_page()))
    await asyncio.sleep(0.01)

    with pytest.raises(Cancelled):
        await asyncio.wait_for(pipeline.prepare("hello", "page", _hello_page(), timeout=0.05), timeout=1.0)

    gen.release.set()
    prepared = await first
    assert list(prepared.index.chunks) == ["chunk-0"]


@pytest.mark.asyncio
async def test_translation_failure_becomes_warning():
    gen = ScriptedGenerator({TRANSLATE_MARKER: RuntimeError("no model for fr")}, default="Plain answer.")
    ans = await _pipeline(gen).answer("hello", "page", _hello_page(), target_language="fr")
    assert ans.text == "Plain answer."
    assert ans.translated is False
    assert ans.language == "en"
    assert any("translation unavailable" in w for w in ans.warnings)


@pytest.mark.asyncio
async def test_translation_through_generator():
    gen = ScriptedGenerator({TRANSLATE_MARKER: "Bonjour."}, default="Hello.")
    ans = await _pipeline(gen).answer("hello", "page", _hello_page(), target_language="fr")
    assert (ans.text, ans.language, ans.translated) == ("Bonjour.", "fr", True)


@pytest.mark.asyncio
async def test_llm_rerank_when_more_candidates_than_k():
    gen = ScriptedGenerator({RERANK_MARKER: '["chunk-0"]'})
    cfg = AppConfig.model_validate({"retrieval": {"useLLM": True, "rerankK": 1}})
    pipeline = _pipeline(gen, cfg)
    seen = []
    pipeline.subscribe(seen.append)
    prepared = await pipeline.prepare("hello", "page", _hello_page())

    assert prepared.result.ref_ids == ["chunk-0"]
    assert prepared.result.rationale == "llm"
    assert ev.RERANK_DONE in [e.type for e in seen]


@pytest.mark.asyncio
async def test_wide_queries_get_more_passages():
    cfg = AppConfig.model_validate({"retrieval": {"rerankK": 1}})
    prepared = await _pipeline(ScriptedGenerator(), cfg).prepare("compare hello vs world", "page", _hello_page())
    assert prepared.classification.breadth == "wide"
    assert prepared.trace["rerank_k"] == 2
    assert len(prepared.result.ref_ids) == 2


@pytest.mark.asyncio
async def test_notes_corpus_with_synonyms():
    store = FakeStore(
        {
            "notes": {
                "n1": {"name": "Study", "content": "# Findings\nThe findings show a clear effect."},
                "n2": {"name": "Groceries", "content": "Milk and eggs."},
            }
        }
    )
    cfg = AppConfig.model_validate({"retrieval": {"useSynonyms": True}})
    pipeline = _pipeline(ScriptedGenerator(), cfg, notes_store=store)
    prepared = await pipeline.prepare("show the results", "notes")

    assert "findings" in prepared.expansions
    assert prepared.corpus_key == "notes:all"
    assert prepared.bundle.selected_chunk_ids
    assert all(cid.startswith("n1::") for cid in prepared.bundle.selected_chunk_ids)


@pytest.mark.asyncio
async def test_trace_log_is_written(tmp_path):
    cfg = AppConfig()
    session = ModelSession(ScriptedGenerator())
    pipeline = build_pipeline(cfg, session, trace_path=tmp_path / "q.jsonl")
    await pipeline.answer("hello", "page", _hello_page())
    [line] = (tmp_path / "q.jsonl").read_text(encoding="utf-8").splitlines()
    record = json.loads(line)
    assert record["question"] == "hello"
    assert record["trace"]["corpus_key"] == f"page:{URL}"
    pipeline.close()


def test_answer_confidence():
    assert answer_confidence("") == "low"
    assert answer_confidence("Short.") == "low"
    assert answer_confidence("word " * 50) == "medium"
    assert answer_confidence("One sentence here. " * 40) == "high"
