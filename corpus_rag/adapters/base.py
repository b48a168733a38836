from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import ChunkerConfig
from ..index.schema import Chunk, Document
from ..ingest.chunker import TextChunker
from ..utils.hashing import content_fingerprint

logger = logging.getLogger(__name__)


class ChunkOptions(BaseModel):
    max_chunk_chars: int
    overlap_chars: int = 0
    min_chunk_chars: int = 0

    def merged(self, override: Optional[ChunkerConfig]) -> "ChunkOptions":
        if override is None:
            return self
        top = override.max_chunk_chars or self.max_chunk_chars
        # inherited sizes shrink to fit a smaller max
        overlap = override.overlap_chars
        if overlap is None:
            overlap = min(self.overlap_chars, top // 2)
        least = override.min_chunk_chars
        if least is None:
            least = min(self.min_chunk_chars, top // 2)
        return ChunkOptions(
            max_chunk_chars=top,
            overlap_chars=min(overlap, top - 1),
            min_chunk_chars=min(least, top - 1),
        )


class CorpusContext(BaseModel):
    """Per-call parameters handed to an adapter."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    url: Optional[str] = None
    text: Optional[str] = None              # free-text filter for history/bookmarks/downloads
    days: Optional[int] = None
    max_results: Optional[int] = None
    note_ids: Optional[List[str]] = None
    pills: List[Dict[str, Any]] = Field(default_factory=list)
    max_docs: Optional[int] = None
    max_total_chars: Optional[int] = None
    snapshot: Optional[Any] = None          # a PageSnapshot captured earlier
    extra: Dict[str, Any] = Field(default_factory=dict)


class CorpusAdapter(ABC):
    """Uniform document source over one corpus kind."""

    kind: str = ""
    source_kind: str = ""
    default_chunking = ChunkOptions(max_chunk_chars=4000, overlap_chars=0, min_chunk_chars=500)
    namespace_chunks = True

    @abstractmethod
    def get_index_key(self, context: CorpusContext) -> str:
        ...

    @abstractmethod
    async def list_documents(self, context: CorpusContext) -> List[Document]:
        ...

    def compute_content_hash(self, doc: Document) -> str:
        return content_fingerprint(doc.title, doc.text)

    async def fetch_full_text(self, doc: Document) -> str:
        return doc.text

    def chunk_document(self, doc: Document, options: Optional[ChunkOptions] = None) -> List[Chunk]:
        opts = options or self.default_chunking
        chunker = TextChunker(opts.max_chunk_chars, opts.overlap_chars, opts.min_chunk_chars)
        out: List[Chunk] = []
        for raw in chunker.split(doc.text, doc.headings):
            cid = f"{doc.id}::{raw.id}" if self.namespace_chunks else raw.id
            out.append(
                Chunk(
                    id=cid,
                    doc_id=doc.id,
                    heading=raw.heading,
                    content=raw.content,
                    size_chars=raw.size,
                    index=raw.index,
                )
            )
        return out

    @staticmethod
    def apply_limits(docs: List[Document], context: CorpusContext) -> List[Document]:
        """Enforce max_docs / max_total_chars; a cut marks the kept documents as truncated."""
        max_docs = context.max_docs
        max_chars = context.max_total_chars
        kept: List[Document] = []
        total = 0
        truncated = False
        for d in docs:
            if max_docs is not None and len(kept) >= max_docs:
                truncated = True
                break
            if max_chars is not None and total + len(d.text) > max_chars:
                room = max_chars - total
                if room > 0:
                    kept.append(d.model_copy(update={"text": d.text[:room], "size_bytes": len(d.text[:room].encode("utf-8"))}))
                truncated = True
                break
            kept.append(d)
            total += len(d.text)
        if truncated:
            logger.info("corpus truncated to %d of %d documents", len(kept), len(docs))
            kept = [d.model_copy(update={"extra": {**d.extra, "truncated": True}}) for d in kept]
        return kept
