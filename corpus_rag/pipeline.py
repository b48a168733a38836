"""
Question answering over one corpus, end to end:

    validate -> adapter -> documents -> index (cache or build) -> classify
    -> synonyms -> lexical retrieve -> rerank -> compose -> stream -> translate

Each call owns its index and its cancellation token. The index cache is the
only state shared between calls.
"""

from __future__ import annotations

import inspect
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Union

from llm.base import Translator
from llm.session import ModelSession

from .adapters.base import CorpusContext
from .adapters.registry import AdapterRegistry
from .answer.classify import classify, classify_with_model
from .answer.compose import PromptComposer
from .answer.translate import TranslationService
from .config import AppConfig
from .errors import TranslatorUnavailable, ValidationError
from .index.builder import IndexBuilder
from .index.cache import IndexCache
from .index.schema import (
    Answer,
    Index,
    PromptBundle,
    QueryClassification,
    RetrievalCandidate,
    RetrievalResult,
    UsedRef,
)
from .retrieve.lexical import LexicalRetriever
from .retrieve.rerank import LLMReranker
from .retrieve.synonyms import SynonymExpander
from .utils import events as ev
from .utils.cancel import CancellationToken, ensure_token
from .utils.log import TraceLog
from .utils.tokens import TokenBudget

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Any]


def answer_confidence(text: str) -> str:
    """Longer answers with several sentences read as more confident."""
    s = (text or "").strip()
    if not s:
        return "low"
    sentences = len(re.split(r"[.!?]\s+", s))
    if len(s) > 600 and sentences >= 3:
        return "high"
    if len(s) > 200:
        return "medium"
    return "low"


class _Timer:
    def __init__(self) -> None:
        self.t0 = time.perf_counter()
        self.ms: Dict[str, int] = {}

    def lap(self, name: str, since: float) -> float:
        now = time.perf_counter()
        self.ms[name] = int((now - since) * 1000)
        return now

    def total(self) -> None:
        self.ms["total_ms"] = int((time.perf_counter() - self.t0) * 1000)


@dataclass
class PreparedPrompt:
    query: str
    corpus: str
    corpus_key: str
    index: Index
    classification: QueryClassification
    expansions: List[str]
    candidates: List[RetrievalCandidate]
    result: RetrievalResult
    bundle: PromptBundle
    cancel: CancellationToken
    events: ev.ProgressEmitter
    timers: _Timer
    trace: Dict[str, Any] = field(default_factory=dict)


class RetrievalPipeline:
    def __init__(
        self,
        registry: AdapterRegistry,
        session: ModelSession,
        config: Optional[AppConfig] = None,
        *,
        cache: Optional[IndexCache] = None,
        translator: Optional[Translator] = None,
        token_budget: Optional[TokenBudget] = None,
        trace_log: Optional[TraceLog] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.registry = registry
        self.session = session
        cc = self.config.cache
        if cache is None and cc.enabled:
            cache = IndexCache(cc.max_entries, cc.max_chars_per_entry)
        self.cache = cache
        self.trace_log = trace_log
        budget = token_budget or TokenBudget(self.config.tokens.chars_per_token)

        self.builder = IndexBuilder(session, self.config.index, self.config.chunker, budget)
        self.retriever = LexicalRetriever(self.config.retrieval.top_m)
        self.synonyms = SynonymExpander()
        self.reranker = LLMReranker(session)
        self.composer = PromptComposer(self.config.tokens, budget)
        self.translation = TranslationService(translator, session)
        self._listeners: List[ev.Listener] = []

    def subscribe(self, listener: ev.Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ---- stages

    def _rerank_k(self, classification: QueryClassification) -> int:
        r = self.config.retrieval
        k = r.rerank_k
        if classification.breadth == "wide":
            k = min(r.top_m, k * 2)
        return max(1, k)

    async def _index(
        self, adapter, docs, key: str, token: CancellationToken, emitter: ev.ProgressEmitter
    ) -> tuple[Index, bool]:
        hashes = {d.id: adapter.compute_content_hash(d) for d in docs}

        async def _build() -> Index:
            return await self.builder.build(docs, adapter, key, cancel=token, events=emitter)

        if self.cache is None:
            return await _build(), False
        hits = self.cache.hits
        index = await self.cache.get_or_build(key, hashes, _build, cancel=token)
        return index, self.cache.hits > hits

    async def prepare(
        self,
        query: str,
        corpus: str,
        context: Union[CorpusContext, Mapping[str, Any], None] = None,
        *,
        cancel: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> PreparedPrompt:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Question must be a non-empty string.", field="query")
        self.session.require()
        adapter = self.registry.get(corpus)
        if context is None:
            ctx = CorpusContext()
        elif isinstance(context, CorpusContext):
            ctx = context
        else:
            ctx = CorpusContext.model_validate(dict(context))

        token = ensure_token(cancel, timeout if timeout is not None else self.config.generation.timeout)
        emitter = ev.ProgressEmitter(self._listeners)
        timers = _Timer()
        r = self.config.retrieval

        key = adapter.get_index_key(ctx)
        emitter.corpus_key = key
        emitter.emit(ev.CAPTURE_START, corpus=corpus)
        t = time.perf_counter()
        docs = await token.guard(adapter.list_documents(ctx))
        t = timers.lap("capture_ms", t)

        index, cache_hit = await self._index(adapter, docs, key, token, emitter)
        t = timers.lap("index_ms", t)

        if r.classify_with_llm:
            classification = await classify_with_model(query, self.session, token)
        else:
            classification = classify(query)

        expansions: List[str] = []
        if r.use_synonyms:
            expansions = await self.synonyms.expand(
                query, index, use_llm=r.use_llm, limit=r.synonym_limit, session=self.session, cancel=token
            )
        candidates = self.retriever.retrieve(query, index, expansions)
        emitter.emit(ev.RETRIEVE_DONE, count=len(candidates), ref_ids=[c.ref_id for c in candidates])
        t = timers.lap("retrieve_ms", t)

        k = self._rerank_k(classification)
        if r.use_llm and len(candidates) > k:
            result = await self.reranker.rerank(index, query, candidates, k, token)
            emitter.emit(ev.RERANK_DONE, ref_ids=result.ref_ids, rationale=result.rationale)
        else:
            result = RetrievalResult(ref_ids=[c.ref_id for c in candidates[:k]], rationale="lexical")
        t = timers.lap("rerank_ms", t)

        token.raise_if_cancelled()
        bundle = self.composer.compose(query, index, result.ref_ids, classification)
        emitter.emit(
            ev.PROMPT_READY,
            token_estimate=bundle.token_estimate,
            truncated=bundle.truncated,
            selected_chunk_ids=bundle.selected_chunk_ids,
        )
        timers.lap("compose_ms", t)

        trace = {
            "corpus_key": key,
            "cache_hit": cache_hit,
            "documents": len(index.documents),
            "chunks": len(index.chunks),
            "classification": classification.model_dump(),
            "expansions": expansions,
            "candidate_ids": [c.ref_id for c in candidates],
            "rerank_k": k,
            "rationale": result.rationale,
        }
        return PreparedPrompt(
            query=query,
            corpus=corpus,
            corpus_key=key,
            index=index,
            classification=classification,
            expansions=expansions,
            candidates=candidates,
            result=result,
            bundle=bundle,
            cancel=token,
            events=emitter,
            timers=timers,
            trace=trace,
        )

    async def stream(
        self, prepared: PreparedPrompt, cancel: Optional[CancellationToken] = None
    ) -> AsyncIterator[str]:
        """Answer pieces in stream order; pieces already yielded stay delivered on failure."""
        token = cancel or prepared.cancel
        n = 0
        chars = 0
        async for piece in self.session.stream(prepared.bundle.prompt, token):
            n += 1
            chars += len(piece)
            prepared.events.emit(ev.ANSWER_CHUNK, index=n, text=piece)
            yield piece
        prepared.events.emit(ev.ANSWER_DONE, chunks=n, chars=chars)

    async def answer(
        self,
        query: str,
        corpus: str,
        context: Union[CorpusContext, Mapping[str, Any], None] = None,
        *,
        cancel: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        target_language: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Answer:
        prepared = await self.prepare(query, corpus, context, cancel=cancel, timeout=timeout)
        token = prepared.cancel
        t = time.perf_counter()

        pieces: List[str] = []
        async for piece in self.stream(prepared, token):
            pieces.append(piece)
            if on_chunk is not None:
                res = on_chunk(piece)
                if inspect.isawaitable(res):
                    await res
        text = "".join(pieces).strip()
        t = prepared.timers.lap("generate_ms", t)

        language = self.session.output_language
        translated = False
        if target_language and target_language != language and text:
            try:
                text = await self.translation.translate(text, target_language, source=language or "en", cancel=token)
                language = target_language
                translated = True
            except TranslatorUnavailable as err:
                prepared.events.warn(f"translation unavailable: {err}", target=target_language)
            prepared.timers.lap("translate_ms", t)
        prepared.timers.total()

        index = prepared.index
        used: List[UsedRef] = []
        for cid in prepared.bundle.selected_chunk_ids:
            c = index.chunks.get(cid)
            if c is not None:
                used.append(UsedRef(doc_id=c.doc_id, chunk_id=c.id, heading=c.heading))

        trace = dict(prepared.trace, timers_ms=prepared.timers.ms, token_estimate=prepared.bundle.token_estimate)
        ans = Answer(
            text=text,
            ref_ids=prepared.result.ref_ids,
            used_refs=used,
            prompt=prepared.bundle,
            classification=prepared.classification,
            confidence=answer_confidence(text),
            language=language,
            translated=translated,
            warnings=list(prepared.events.warnings),
            trace=trace,
        )
        if self.trace_log is not None:
            try:
                self.trace_log.write({"question": query, "corpus": corpus, "ref_ids": ans.ref_ids, "trace": trace})
            except OSError as err:
                logger.warning("could not write trace log: %s", err)
        return ans

    def close(self) -> None:
        self.session.close()


def build_pipeline(
    config: AppConfig,
    session: ModelSession,
    *,
    registry: Optional[AdapterRegistry] = None,
    translator: Optional[Translator] = None,
    trace_path: Optional[Union[str, Path]] = None,
    **providers: Any,
) -> RetrievalPipeline:
    """Wire a pipeline from config. `providers` go to AdapterRegistry.default."""
    reg = registry or AdapterRegistry.default(config, **providers)
    path = trace_path if trace_path is not None else config.logging.trace_path
    return RetrievalPipeline(
        reg,
        session,
        config,
        translator=translator,
        trace_log=TraceLog(Path(path)) if path else None,
    )
