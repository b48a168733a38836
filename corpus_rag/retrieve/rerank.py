from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, List, Optional

from ..errors import Cancelled, CorpusRagError
from ..index.schema import Index, RetrievalCandidate, RetrievalResult
from ..utils.cancel import CancellationToken
from ..utils.jsonparse import parse_string_list

if TYPE_CHECKING:
    from llm.session import ModelSession

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 300

RERANK_PROMPT = """You rank passages for answering a question.
Question: {query}

Candidates:
{lines}

Return ONLY a JSON array with at most {k} candidate ids, best first. Use ids exactly as listed."""


def candidate_snippet(index: Index, ref_id: str) -> str:
    s = index.summary_for(ref_id)
    text = s.text if s is not None else ""
    if not text:
        chunk = index.chunks.get(ref_id)
        text = chunk.content if chunk is not None else ""
    return re.sub(r"\s+", " ", text).strip()[:SNIPPET_CHARS]


class LLMReranker:
    """
    One model call that reorders lexical candidates.

    Whatever goes wrong (model error, unparseable output, no usable ids) the
    result is the first `k` lexical candidates in their original order.
    """

    def __init__(self, session: Optional["ModelSession"]) -> None:
        self.session = session

    def build_prompt(self, query: str, index: Index, candidates: List[RetrievalCandidate], k: int) -> str:
        lines = [
            f"{n}. {c.ref_id} [{c.kind}] :: {candidate_snippet(index, c.ref_id)}"
            for n, c in enumerate(candidates, start=1)
        ]
        return RERANK_PROMPT.format(query=query, lines="\n".join(lines), k=k)

    @staticmethod
    def select(raw: str, candidates: List[RetrievalCandidate], k: int) -> List[str]:
        """Ids from `raw` that are candidates, deduplicated, at most `k`. Raises ValueError."""
        known = {c.ref_id for c in candidates}
        out: List[str] = []
        for ref in parse_string_list(raw):
            if ref in known and ref not in out:
                out.append(ref)
                if len(out) >= k:
                    break
        return out

    @staticmethod
    def fallback(candidates: List[RetrievalCandidate], k: int, why: str) -> RetrievalResult:
        return RetrievalResult(ref_ids=[c.ref_id for c in candidates[:k]], rationale=f"lexical order ({why})")

    async def rerank(
        self,
        index: Index,
        query: str,
        candidates: List[RetrievalCandidate],
        k: int,
        cancel: Optional[CancellationToken] = None,
    ) -> RetrievalResult:
        if not candidates:
            return RetrievalResult(ref_ids=[], rationale="no candidates")
        if self.session is None or not self.session.available:
            return self.fallback(candidates, k, "no model")
        try:
            raw = await self.session.prompt(self.build_prompt(query, index, candidates, k), cancel)
        except Cancelled:
            raise
        except CorpusRagError as err:
            logger.warning("rerank model call failed: %s", err)
            return self.fallback(candidates, k, "model error")
        try:
            picked = self.select(raw, candidates, k)
        except ValueError as err:
            logger.info("rerank output unusable: %s", err)
            return self.fallback(candidates, k, "unparseable output")
        if not picked:
            return self.fallback(candidates, k, "no known ids")
        return RetrievalResult(ref_ids=picked, rationale="llm")
