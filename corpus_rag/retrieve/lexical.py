from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Tuple

from ..index.schema import Index, RetrievalCandidate, Summary

STOP_WORDS = frozenset(
    """
    the a an and or but of to in on for with as by is are was were be been it
    this that from at which will can would should could about into over than
    then so if we you they i what how why when where show give tell
    """.split()
)

_PUNCT_RE = re.compile(r"[^\w\s-]+", re.UNICODE)

SUMMARY_HIT = 2.0
HEADING_HIT = 3.0
TOC_BONUS = 1.0
CHUNK_DAMPING = 0.9
_KIND_RANK = {"section": 0, "global": 1, "chunk": 2}


def tokenize(text: str, stop_words: Iterable[str] = STOP_WORDS) -> List[str]:
    """Lower-case word tokens; hyphens/underscores survive only inside words."""
    stops = stop_words if isinstance(stop_words, (set, frozenset)) else set(stop_words)
    cleaned = _PUNCT_RE.sub(" ", (text or "").lower())
    out: List[str] = []
    for raw in cleaned.split():
        tok = raw.strip("-_")
        if tok and tok not in stops:
            out.append(tok)
    return out


def _dedupe(tokens: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for t in tokens:
        if t not in seen:
            seen.add(t)
            out.append(t)
    return out


class LexicalRetriever:
    """Keyword scoring over index summaries, preferring sections to chunks."""

    def __init__(self, top_m: int = 12) -> None:
        self.top_m = top_m

    def score_summary(
        self,
        summary: Summary,
        tokens: List[str],
        index: Index,
        toc_headings: Optional[set] = None,
    ) -> float:
        text = (summary.text or "").lower()
        score = 0.0
        for t in tokens:
            if len(t) >= 2 and t in text:
                score += SUMMARY_HIT
        if summary.kind == "section":
            sec = index.section(summary.ref_id)
            if sec is not None:
                heading = sec.heading.lower()
                for t in tokens:
                    if t in heading:
                        score += HEADING_HIT
                if toc_headings is None:
                    toc_headings = {e.heading for e in index.toc}
                if sec.heading in toc_headings:
                    score += TOC_BONUS
        elif summary.kind == "chunk":
            score *= CHUNK_DAMPING
        return score

    def retrieve(
        self,
        query: str,
        index: Index,
        extra_terms: Iterable[str] = (),
        top_m: Optional[int] = None,
    ) -> List[RetrievalCandidate]:
        tokens = _dedupe(tokenize(query) + [t.lower() for t in extra_terms if t])
        if not tokens:
            return []
        toc_headings = {e.heading for e in index.toc}

        best: Dict[str, Tuple[float, str]] = {}
        for s in index.summaries:
            score = self.score_summary(s, tokens, index, toc_headings)
            prev = best.get(s.ref_id)
            if prev is None or score > prev[0]:
                best[s.ref_id] = (score, s.kind)

        cands = [
            RetrievalCandidate(ref_id=ref, score=score, kind=kind)
            for ref, (score, kind) in best.items()
            if score > 0
        ]
        cands.sort(key=lambda c: (-c.score, _KIND_RANK.get(c.kind, 3), len(c.ref_id), c.ref_id))
        return cands[: (top_m or self.top_m)]
