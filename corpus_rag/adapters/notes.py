from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Protocol

from ..errors import AdapterError
from ..index.schema import Document
from ..utils.hashing import djb2
from .base import ChunkOptions, CorpusAdapter, CorpusContext

logger = logging.getLogger(__name__)

NOTES_KEY = "notes"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any:
        ...


def _ts(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class NotesAdapter(CorpusAdapter):
    """Saved notes, read from the `notes` mapping of a key-value store. Read-only."""

    kind = "notes"
    source_kind = "note"
    default_chunking = ChunkOptions(max_chunk_chars=8000, overlap_chars=300, min_chunk_chars=600)

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def get_index_key(self, context: CorpusContext) -> str:
        if context.note_ids:
            return "notes:" + djb2(",".join(sorted(context.note_ids)))
        return "notes:all"

    async def _read(self) -> Dict[str, Any]:
        try:
            data = await self.store.get(NOTES_KEY)
        except Exception as err:  # noqa: BLE001 - storage backends raise anything
            raise AdapterError(f"Failed to read notes: {err}", source=self.kind) from err
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise AdapterError("Stored notes are not a mapping.", source=self.kind)
        return data

    async def list_documents(self, context: CorpusContext) -> List[Document]:
        notes = await self._read()
        wanted = set(context.note_ids) if context.note_ids else None
        now = time.time()
        docs: List[Document] = []
        for note_id, note in notes.items():
            if wanted is not None and note_id not in wanted:
                continue
            if not isinstance(note, dict):
                logger.warning("skipping malformed note %s", note_id)
                continue
            content = str(note.get("content") or "")
            created = _ts(note.get("created_at", note.get("createdAt")), now)
            updated: Optional[float] = note.get("updated_at", note.get("updatedAt"))
            docs.append(
                Document(
                    id=str(note_id),
                    title=str(note.get("name") or "Untitled"),
                    created_at=created,
                    updated_at=_ts(updated, created) if updated is not None else None,
                    text=content,
                    size_bytes=len(content.encode("utf-8")),
                    source_kind="note",
                )
            )
        return self.apply_limits(docs, context)
