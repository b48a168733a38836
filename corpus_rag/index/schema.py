from __future__ import annotations

import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SourceKind = Literal["page", "note", "history", "bookmark", "download", "ctx"]
SummaryKind = Literal["global", "section", "chunk"]
Intent = Literal["fact", "definition", "howto", "comparison", "quote"]
Breadth = Literal["narrow", "wide"]


class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    url: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    updated_at: Optional[float] = None
    language: Optional[str] = None
    headings: List[str] = Field(default_factory=list)
    text: str = ""
    size_bytes: int = 0
    source_kind: SourceKind
    extra: Dict[str, Any] = Field(default_factory=dict)


class Chunk(BaseModel):
    id: str
    doc_id: str
    heading: str = ""
    content: str
    size_chars: int
    index: int                 # 1-based position within its document


class Summary(BaseModel):
    ref_id: str                # doc id | section id | chunk id
    kind: SummaryKind
    text: str
    key_terms: List[str] = Field(default_factory=list)


class SectionDescriptor(BaseModel):
    id: str
    doc_id: str
    heading: str
    start_chunk_index: int
    end_chunk_index: int


class TOCEntry(BaseModel):
    heading: str
    depth: int = 1


class Index(BaseModel):
    corpus_key: str
    documents: List[Document] = Field(default_factory=list)
    sections: List[SectionDescriptor] = Field(default_factory=list)
    chunks: Dict[str, Chunk] = Field(default_factory=dict)
    summaries: List[Summary] = Field(default_factory=list)
    toc: List[TOCEntry] = Field(default_factory=list)
    content_hashes: Dict[str, str] = Field(default_factory=dict)
    built_at: float = Field(default_factory=time.time)

    def document(self, doc_id: str) -> Optional[Document]:
        for d in self.documents:
            if d.id == doc_id:
                return d
        return None

    def section(self, section_id: str) -> Optional[SectionDescriptor]:
        for s in self.sections:
            if s.id == section_id:
                return s
        return None

    def chunks_for_doc(self, doc_id: str) -> List[Chunk]:
        out = [c for c in self.chunks.values() if c.doc_id == doc_id]
        out.sort(key=lambda c: c.index)
        return out

    def chunks_for_section(self, section: SectionDescriptor) -> List[Chunk]:
        return [
            c
            for c in self.chunks_for_doc(section.doc_id)
            if section.start_chunk_index <= c.index <= section.end_chunk_index
        ]

    def summary_for(self, ref_id: str) -> Optional[Summary]:
        for s in self.summaries:
            if s.ref_id == ref_id:
                return s
        return None

    def char_size(self) -> int:
        return sum(c.size_chars for c in self.chunks.values()) + sum(
            len(s.text) for s in self.summaries
        )


class RetrievalCandidate(BaseModel):
    ref_id: str
    score: float
    kind: SummaryKind


class RetrievalResult(BaseModel):
    ref_ids: List[str] = Field(default_factory=list)
    rationale: Optional[str] = None


class QueryClassification(BaseModel):
    intent: Intent = "fact"
    breadth: Breadth = "narrow"


class PromptBundle(BaseModel):
    prompt: str
    selected_chunk_ids: List[str] = Field(default_factory=list)
    token_estimate: int = 0
    truncated: bool = False


class UsedRef(BaseModel):
    doc_id: str
    chunk_id: str
    heading: str = ""


class Answer(BaseModel):
    text: str
    ref_ids: List[str] = Field(default_factory=list)
    used_refs: List[UsedRef] = Field(default_factory=list)
    prompt: Optional[PromptBundle] = None
    classification: Optional[QueryClassification] = None
    confidence: Literal["low", "medium", "high"] = "low"
    language: Optional[str] = None
    translated: bool = False
    warnings: List[str] = Field(default_factory=list)
    trace: Dict[str, Any] = Field(default_factory=dict)
