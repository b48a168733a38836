from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, Field

from ..errors import ValidationError
from ..index.schema import Document
from ..utils.hashing import djb2
from .base import ChunkOptions, CorpusAdapter, CorpusContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_DOCS = 25
DEFAULT_MAX_TOTAL_CHARS = 500_000
NOTE_DIVIDER = "\n\n---\n\n"


class PillItem(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""


class PillData(BaseModel):
    kind: Literal["list", "notes"]
    items: List[PillItem] = Field(default_factory=list)


class Pill(BaseModel):
    id: Optional[str] = None
    label: Optional[str] = None
    text: str = ""
    data: Optional[PillData] = None

    @property
    def kind(self) -> str:
        return self.data.kind if self.data is not None else "text"


def _list_line(item: PillItem) -> str:
    t = item.title.strip()
    u = item.url.strip()
    return f"{t}{' — ' if t and u else ''}{u}".strip()


def _note_block(item: PillItem) -> str:
    return f"# {item.title or 'Untitled'}\n{item.content}"


def _payload(p: Pill) -> str:
    prefix = f"[{p.label}] " if p.label else ""
    if p.data is None:
        return prefix + p.text
    if p.data.kind == "list":
        return prefix + "\n".join(_list_line(i) for i in p.data.items)
    return prefix + NOTE_DIVIDER.join(_note_block(i) for i in p.data.items)


class PillContextAdapter(CorpusAdapter):
    """User-picked snippets attached to the conversation ("pills")."""

    kind = "ctx"
    source_kind = "ctx"
    default_chunking = ChunkOptions(max_chunk_chars=8000, overlap_chars=300, min_chunk_chars=800)

    @staticmethod
    def parse_pills(raw: List[Dict[str, Any]]) -> List[Pill]:
        try:
            return [Pill.model_validate(p) for p in raw]
        except Exception as err:  # pydantic raises its own ValidationError
            raise ValidationError(f"Malformed context pill: {err}", field="pills") from err

    def get_index_key(self, context: CorpusContext) -> str:
        pills = self.parse_pills(context.pills)
        return "ctx:" + djb2("\n---\n".join(_payload(p) for p in pills))

    async def list_documents(self, context: CorpusContext) -> List[Document]:
        pills = self.parse_pills(context.pills)
        max_docs = context.max_docs or DEFAULT_MAX_DOCS
        max_total = context.max_total_chars or DEFAULT_MAX_TOTAL_CHARS
        total = 0
        docs: List[Document] = []
        used_ids: Set[str] = set()
        now = time.time()

        for idx, p in enumerate(pills):
            if len(docs) >= max_docs:
                break
            extra: Dict[str, Any] = {"pill_index": idx, "kind": p.kind}

            if p.data is not None and p.data.kind == "list":
                lines: List[str] = []
                for item in p.data.items:
                    line = _list_line(item)
                    if not line:
                        continue
                    if total + len(line) + 1 > max_total:
                        break
                    lines.append(line)
                    total += len(line) + 1
                text = "\n".join(lines)
                extra.update(count=len(p.data.items), truncated=len(lines) < len(p.data.items))
            elif p.data is not None:
                blocks: List[str] = []
                for item in p.data.items:
                    block = _note_block(item)
                    if total + len(block) + len(NOTE_DIVIDER) > max_total:
                        break
                    blocks.append(block)
                    total += len(block) + len(NOTE_DIVIDER)
                text = NOTE_DIVIDER.join(blocks)
                extra.update(count=len(p.data.items), truncated=len(blocks) < len(p.data.items))
            else:
                text = p.text
                if total + len(text) > max_total:
                    text = text[: max(0, max_total - total)]
                total += len(text)
                extra["truncated"] = len(text) < len(p.text)

            # repeated ids would collide in the index chunk map
            base = p.id or f"pill-{idx + 1}"
            doc_id, n = base, idx + 1
            while doc_id in used_ids:
                doc_id = f"{base}-{n}"
                n += 1
            used_ids.add(doc_id)

            docs.append(
                Document(
                    id=doc_id,
                    title=p.label or f"Context {idx + 1}",
                    created_at=now,
                    text=text,
                    size_bytes=len(text.encode("utf-8")),
                    source_kind="ctx",
                    extra=extra,
                )
            )
            if total >= max_total:
                break

        if len(docs) < len(pills):
            logger.info("kept %d of %d context pills", len(docs), len(pills))
            docs = [d.model_copy(update={"extra": {**d.extra, "truncated": True}}) for d in docs]
        return docs
