"""
Index construction: chunk every document, group chunks into sections and
ask the model for short summaries plus key terms.

Summaries are requested in batches. The model answers with a JSON array of
{"id", "summary", "keyTerms"} objects; anything missing or malformed falls
back to an extractive summary (leading sentences of the source, key terms
from the heading and the most frequent words). Cancellation is the only
failure that leaves the builder.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from ..adapters.base import ChunkOptions, CorpusAdapter
from ..config import ChunkerConfig, IndexConfig
from ..errors import Cancelled, CorpusRagError
from ..ingest.chunker import TextChunker
from ..retrieve.lexical import STOP_WORDS, tokenize
from ..utils import events as ev
from ..utils.cancel import CancellationToken
from ..utils.jsonparse import parse_json_array
from ..utils.tokens import TokenBudget
from .schema import Chunk, Document, Index, SectionDescriptor, Summary, SummaryKind, TOCEntry

if TYPE_CHECKING:
    from llm.session import ModelSession

    from .cache import IndexCache

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

SUMMARY_PROMPT = """You write compact summaries for a search index.
For every item below return one JSON object with:
  "id": the item id, copied exactly
  "summary": at most {summary_chars} characters, plain text
  "keyTerms": up to {max_terms} lower-case topic words or short phrases
Return ONLY a JSON array of these objects, in any order.

{items}"""


@dataclass
class _Item:
    ref_id: str
    kind: SummaryKind
    heading: str
    source: str


def _first_sentences(text: str, max_chars: int) -> str:
    s = re.sub(r"\s+", " ", text or "").strip()
    if len(s) <= max_chars:
        return s
    out: List[str] = []
    used = 0
    for sent in _SENTENCE_SPLIT_RE.split(s):
        extra = len(sent) + (1 if out else 0)
        if used + extra > max_chars:
            break
        out.append(sent)
        used += extra
    if out:
        return " ".join(out)
    return s[: max(0, max_chars - 1)].rstrip() + "…"


def clean_key_terms(terms: Sequence[object], limit: int) -> List[str]:
    """Lower-case, drop stop words and duplicates, keep at most `limit`."""
    out: List[str] = []
    for t in terms:
        if not isinstance(t, str):
            continue
        term = " ".join(t.lower().split()).strip(" .,;:-_")
        if not term or term in STOP_WORDS or term in out:
            continue
        out.append(term)
        if len(out) >= limit:
            break
    return out


def fallback_key_terms(heading: str, text: str, limit: int) -> List[str]:
    words = [w for w in tokenize(heading.lstrip("#")) if len(w) > 2]
    freq = Counter(w for w in tokenize(text) if len(w) > 2)
    ranked = [w for w, _ in sorted(freq.items(), key=lambda kv: (-kv[1], kv[0]))]
    return clean_key_terms(words + ranked, limit)


def build_sections(doc: Document, chunks: List[Chunk]) -> List[SectionDescriptor]:
    sections: List[SectionDescriptor] = []
    current_heading: Optional[str] = None
    for c in chunks:
        if sections and c.heading == current_heading:
            sections[-1].end_chunk_index = c.index
            continue
        n = len(sections) + 1
        current_heading = c.heading
        sections.append(
            SectionDescriptor(
                id=f"{doc.id}::sec-{n}",
                doc_id=doc.id,
                heading=c.heading.strip() or f"Section {n}",
                start_chunk_index=c.index,
                end_chunk_index=c.index,
            )
        )
    return sections


def build_toc(doc: Document) -> List[TOCEntry]:
    known = {h.strip() for h in doc.headings if h and h.strip()}
    toc: List[TOCEntry] = []
    for line in (doc.text or "").split("\n"):
        if not TextChunker.is_heading(line, known):
            continue
        s = line.strip()
        hashes = len(s) - len(s.lstrip("#"))
        toc.append(TOCEntry(heading=s, depth=hashes or 1))
    return toc


class IndexBuilder:
    def __init__(
        self,
        session: Optional["ModelSession"] = None,
        config: Optional[IndexConfig] = None,
        chunker_override: Optional[ChunkerConfig] = None,
        token_budget: Optional[TokenBudget] = None,
    ) -> None:
        self.session = session
        self.config = config or IndexConfig()
        self.chunker_override = chunker_override
        self.budget = token_budget or TokenBudget()

    # ---- summarization

    def _fallback(self, item: _Item) -> Summary:
        limit = self.config.max_key_terms
        return Summary(
            ref_id=item.ref_id,
            kind=item.kind,
            text=_first_sentences(item.source, self.config.summary_chars),
            key_terms=fallback_key_terms(item.heading, item.source, limit),
        )

    def _prompt(self, batch: List[_Item]) -> str:
        lines = []
        for it in batch:
            head = f" heading={json.dumps(it.heading)}" if it.heading else ""
            lines.append(f"### id={json.dumps(it.ref_id)} kind={it.kind}{head}\n{it.source}")
        return SUMMARY_PROMPT.format(
            summary_chars=self.config.summary_chars,
            max_terms=self.config.max_key_terms,
            items="\n\n".join(lines),
        )

    async def _summarize_batch(
        self, batch: List[_Item], cancel: CancellationToken, events: ev.ProgressEmitter
    ) -> Dict[str, Summary]:
        if self.session is None or not self.session.available:
            return {}
        try:
            raw = await self.session.prompt(self._prompt(batch), cancel)
            parsed = parse_json_array(raw)
        except Cancelled:
            raise
        except (CorpusRagError, ValueError) as err:
            events.warn("summary batch failed; using extractive summaries", error=str(err), size=len(batch))
            return {}

        wanted = {it.ref_id: it for it in batch}
        out: Dict[str, Summary] = {}
        for obj in parsed:
            if not isinstance(obj, dict):
                continue
            ref = obj.get("id")
            text = obj.get("summary")
            if ref not in wanted or not isinstance(text, str) or not text.strip():
                continue
            terms = obj.get("keyTerms", obj.get("key_terms")) or []
            if not isinstance(terms, list):
                terms = []
            out[ref] = Summary(
                ref_id=ref,
                kind=wanted[ref].kind,
                text=text.strip()[: self.config.summary_chars * 2],
                key_terms=clean_key_terms(terms, self.config.max_key_terms),
            )
        return out

    # ---- compaction

    def compact(self, summaries: List[Summary]) -> List[Summary]:
        """
        Bound the summary list. Every global summary stays; the first
        `max_sections` section and `max_chunk_summaries` chunk summaries then
        compete for the tokens left under `max_tokens`, sections before chunks
        and shorter before longer. Source order is kept in the result.
        """
        cfg = self.config
        globals_ = [s for s in summaries if s.kind == "global"]
        sections = [s for s in summaries if s.kind == "section"][: cfg.max_sections]
        chunk_sums = [s for s in summaries if s.kind == "chunk"][: cfg.max_chunk_summaries]

        room = max(0, cfg.max_tokens - self.budget.total(s.text for s in globals_))
        rank = {"section": 0, "chunk": 1}
        kept = self.budget.prune(
            sections + chunk_sums,
            lambda s: s.text,
            room,
            key=lambda s: (rank[s.kind], self.budget.estimate(s.text)),
        )
        keep = {id(s) for s in globals_} | {id(s) for s in kept}
        out = [s for s in summaries if id(s) in keep]
        if len(out) < len(summaries):
            logger.info("index pruned to %d of %d summaries", len(out), len(summaries))
        return out

    # ---- build

    def chunk_options(self, adapter: CorpusAdapter, options: Optional[ChunkOptions] = None) -> ChunkOptions:
        return (options or adapter.default_chunking).merged(self.chunker_override)

    async def build(
        self,
        documents: List[Document],
        adapter: CorpusAdapter,
        corpus_key: str,
        *,
        chunk_options: Optional[ChunkOptions] = None,
        cancel: Optional[CancellationToken] = None,
        events: Optional[ev.ProgressEmitter] = None,
        cache: Optional["IndexCache"] = None,
    ) -> Index:
        cancel = cancel or CancellationToken()
        events = events or ev.ProgressEmitter()
        hashes = {d.id: adapter.compute_content_hash(d) for d in documents}

        if cache is not None:
            hit = cache.get(corpus_key, hashes)
            if hit is not None:
                return hit

        opts = self.chunk_options(adapter, chunk_options)
        chunks: Dict[str, Chunk] = {}
        sections: List[SectionDescriptor] = []
        toc: List[TOCEntry] = []
        items: List[_Item] = []
        substitutes: Dict[str, str] = {}

        for doc in documents:
            cancel.raise_if_cancelled()
            doc_chunks = adapter.chunk_document(doc, opts)
            for c in doc_chunks:
                chunks[c.id] = c
            events.emit(ev.CHUNK_DONE, doc_id=doc.id, chunks=len(doc_chunks))
            doc_sections = build_sections(doc, doc_chunks)
            sections.extend(doc_sections)
            toc.extend(build_toc(doc))

            substitutes[doc.id] = (doc.text or "")[: opts.min_chunk_chars]
            if (doc.text or "").strip():
                items.append(_Item(doc.id, "global", doc.title, doc.text[: self.config.section_input_chars]))
            by_index = {c.index: c for c in doc_chunks}
            for sec in doc_sections:
                body = "\n".join(
                    by_index[i].content
                    for i in range(sec.start_chunk_index, sec.end_chunk_index + 1)
                    if i in by_index
                )
                items.append(_Item(sec.id, "section", sec.heading, body[: self.config.section_input_chars]))
            for c in doc_chunks:
                items.append(_Item(c.id, "chunk", c.heading, c.content[: self.config.section_input_chars]))

        produced: Dict[str, Summary] = {}
        size = self.config.batch_size
        total = len(items)
        for start in range(0, total, size):
            cancel.raise_if_cancelled()
            batch = items[start : start + size]
            produced.update(await self._summarize_batch(batch, cancel, events))
            events.emit(ev.SUMMARY_PROGRESS, done=min(start + size, total), total=total)

        summaries: List[Summary] = []
        model_used = self.session is not None and self.session.available
        for doc in documents:
            g = produced.get(doc.id)
            if g is None:
                if (doc.text or "").strip() and model_used:
                    logger.warning("global summary failed for %s; using leading text", doc.id)
                g = Summary(
                    ref_id=doc.id,
                    kind="global",
                    text=substitutes[doc.id],
                    key_terms=fallback_key_terms(doc.title, substitutes[doc.id], self.config.max_key_terms),
                )
            summaries.append(g)

        missing = 0
        for it in items:
            if it.kind == "global":
                continue
            s = produced.get(it.ref_id)
            if s is None:
                missing += 1
                s = self._fallback(it)
            summaries.append(s)
        if missing and model_used:
            events.warn(f"{missing} summaries fell back to extractive text", missing=missing)

        index = Index(
            corpus_key=corpus_key,
            documents=list(documents),
            sections=sections,
            chunks=chunks,
            summaries=self.compact(summaries),
            toc=toc,
            content_hashes=hashes,
            built_at=time.time(),
        )
        logger.info(
            "index built key=%s docs=%d chunks=%d sections=%d summaries=%d",
            corpus_key, len(documents), len(chunks), len(sections), len(index.summaries),
        )
        return index
