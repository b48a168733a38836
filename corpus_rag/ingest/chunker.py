from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from ..errors import ValidationError

_MD_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s*\S")
_SENTENCE_ENDS = (". ", "! ", "? ")
_WORD_BREAKS = (" ", "\t", "\n")
MAX_PLAIN_HEADING_CHARS = 60


@dataclass
class RawChunk:
    id: str
    index: int
    heading: str
    content: str

    @property
    def size(self) -> int:
        return len(self.content)


class TextChunker:
    """
    Line-oriented splitter with heading attribution.

    Lines accumulate in a buffer. A heading line closes the buffer once it
    holds at least `min_chunk_chars`; a buffer that grows past
    `max_chunk_chars` is cut at the last paragraph break, sentence end or
    space found above `min_chunk_chars` (hard cut otherwise). Only forced
    cuts carry `overlap_chars` into the next chunk. A final buffer smaller
    than `min_chunk_chars` is merged into the previous chunk.
    """

    def __init__(self, max_chunk_chars: int = 4000, overlap_chars: int = 0, min_chunk_chars: int = 0):
        if max_chunk_chars <= 0:
            raise ValidationError("max_chunk_chars must be positive", field="max_chunk_chars")
        if overlap_chars < 0 or min_chunk_chars < 0:
            raise ValidationError("overlap_chars and min_chunk_chars must be >= 0")
        if min_chunk_chars >= max_chunk_chars:
            raise ValidationError("min_chunk_chars must be smaller than max_chunk_chars", field="min_chunk_chars")
        if overlap_chars >= max_chunk_chars:
            raise ValidationError("overlap_chars must be smaller than max_chunk_chars", field="overlap_chars")
        self.max_chunk_chars = int(max_chunk_chars)
        self.overlap_chars = int(overlap_chars)
        self.min_chunk_chars = int(min_chunk_chars)

    # ---- heading detection

    @staticmethod
    def is_heading(line: str, known: Optional[Set[str]] = None) -> bool:
        if _MD_HEADING_RE.match(line):
            return True
        s = line.strip()
        if not s or not known or len(s) > MAX_PLAIN_HEADING_CHARS:
            return False
        return s[0].isupper() and s in known

    # ---- cut selection

    def _cut_point(self, buf: str) -> int:
        window = buf[: self.max_chunk_chars]
        lo = self.min_chunk_chars

        # the emitted head is right-stripped, so measure it that way
        def fits(cut: int) -> bool:
            return len(window[:cut].rstrip()) >= lo

        idx = window.rfind("\n\n", lo)
        if idx != -1 and fits(idx + 2):
            return idx + 2
        best = max(window.rfind(sep, lo) for sep in _SENTENCE_ENDS)
        if best != -1 and fits(best + 2):
            return best + 2
        idx = max(window.rfind(ws, lo) for ws in _WORD_BREAKS)
        if idx != -1 and fits(idx + 1):
            return idx + 1
        return self.max_chunk_chars

    def _overlap_seed(self, emitted: str, cut: int) -> str:
        n = min(self.overlap_chars, cut - 1)
        if n <= 0:
            return ""
        tail = emitted[-n:]
        # start on a word when the tail has one
        if len(emitted) > n and not emitted[-n - 1].isspace():
            m = re.search(r"\s", tail)
            if m and m.end() < len(tail):
                tail = tail[m.end() :]
        return tail.lstrip()

    # ---- main entry

    def split(self, text: str, headings: Iterable[str] = ()) -> List[RawChunk]:
        if not text or not text.strip():
            return []

        known = {h.strip() for h in headings if h and h.strip()}
        out: List[RawChunk] = []
        buf = ""
        buf_heading = ""
        active = ""

        def emit(content: str, heading: str, allow_merge: bool) -> None:
            content = content.rstrip()
            if not content.strip():
                return
            if allow_merge and out and len(content) < self.min_chunk_chars:
                prev = out[-1]
                prev.content = prev.content + "\n" + content
                return
            n = len(out)
            out.append(RawChunk(id=f"chunk-{n}", index=n + 1, heading=heading, content=content))

        lines = text.split("\n")
        last = len(lines) - 1
        for i, line in enumerate(lines):
            piece = line if i == last else line + "\n"

            if self.is_heading(line, known):
                if buf.strip() and len(buf.rstrip()) >= self.min_chunk_chars:
                    emit(buf, buf_heading, allow_merge=False)
                    buf = ""
                active = line.strip()
                if not buf.strip():
                    buf = ""
                    buf_heading = active

            buf += piece

            while len(buf) > self.max_chunk_chars:
                cut = self._cut_point(buf)
                head = buf[:cut]
                emit(head, buf_heading, allow_merge=False)
                buf = self._overlap_seed(head, cut) + buf[cut:]
                buf_heading = active

        emit(buf, buf_heading, allow_merge=True)
        return out
