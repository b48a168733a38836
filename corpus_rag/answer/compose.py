from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import TokensConfig
from ..errors import BudgetExceeded
from ..index.schema import Index, PromptBundle, QueryClassification
from ..utils.tokens import TokenBudget

logger = logging.getLogger(__name__)

NO_SOURCES = "=== NO SOURCES ===\n(no passages matched the question)\n\n"

ROLE = (
    "You are a careful assistant answering questions about the user's own documents.\n"
    "Answer the question using only the numbered passages below."
)

INTENT_HINTS = {
    "fact": "Give a direct, concise answer.",
    "definition": "Give a short definition first, then any needed detail.",
    "howto": "Answer as ordered steps.",
    "comparison": "Compare the items point by point and state the key differences.",
    "quote": "Quote the relevant wording exactly and say which passage it comes from.",
}

CLOSING = (
    "Use only facts stated in the passages above. Do not add outside knowledge. "
    "If the passages do not contain the answer, say that the documents do not cover it. "
    "Refer to passages by their [S#] labels."
)


@dataclass
class Passage:
    ref_id: str
    title: str
    heading: str
    text: str
    chunk_ids: List[str] = field(default_factory=list)
    capped: bool = False

    def render(self, label: str) -> str:
        where = f"{self.title} › {self.heading}" if self.heading else self.title
        return f"=== [{label}] {where} ===\n{self.text.strip()}\n\n"


class PromptComposer:
    def __init__(self, config: Optional[TokensConfig] = None, budget: Optional[TokenBudget] = None) -> None:
        self.config = config or TokensConfig()
        self.budget = budget or TokenBudget(self.config.chars_per_token)

    # ---- resolution

    def resolve(self, index: Index, ref_id: str) -> Optional[Passage]:
        sec = index.section(ref_id)
        if sec is not None:
            doc = index.document(sec.doc_id)
            chunks = index.chunks_for_section(sec)
            body = "\n\n".join(c.content for c in chunks)
            cap = self.config.section_cap_chars
            capped = len(body) > cap
            if capped:
                body = body[: max(0, cap - 1)].rstrip() + "…"
            return Passage(
                ref_id=ref_id,
                title=doc.title if doc else sec.doc_id,
                heading=sec.heading,
                text=body,
                chunk_ids=[c.id for c in chunks],
                capped=capped,
            )
        chunk = index.chunks.get(ref_id)
        if chunk is not None:
            doc = index.document(chunk.doc_id)
            return Passage(
                ref_id=ref_id,
                title=doc.title if doc else chunk.doc_id,
                heading=chunk.heading,
                text=chunk.content,
                chunk_ids=[chunk.id],
            )
        doc = index.document(ref_id)
        if doc is not None:
            chunks = index.chunks_for_doc(doc.id)
            if not chunks:
                return None
            first = chunks[0]
            return Passage(ref_id=ref_id, title=doc.title, heading=first.heading, text=first.content, chunk_ids=[first.id])
        logger.debug("ref id %s does not resolve", ref_id)
        return None

    # ---- envelope

    def _head(self, question: str, classification: Optional[QueryClassification]) -> str:
        intent = classification.intent if classification else "fact"
        return (
            f"{ROLE}\n{INTENT_HINTS.get(intent, INTENT_HINTS['fact'])}\n\n"
            f"Question: {question.strip()}\n\nPassages:\n\n"
        )

    def compose(
        self,
        question: str,
        index: Index,
        ref_ids: List[str],
        classification: Optional[QueryClassification] = None,
        budget_tokens: Optional[int] = None,
    ) -> PromptBundle:
        B = int(budget_tokens or self.config.budget)
        head = self._head(question, classification)
        tail = CLOSING
        envelope_tokens = self.budget.estimate(head + NO_SOURCES + tail)
        overhead = max(self.config.prompt_overhead, envelope_tokens)
        available = B - overhead - self.config.answer_reserve
        if available < 0 or envelope_tokens + self.config.answer_reserve > B:
            raise BudgetExceeded(
                "Prompt envelope alone exceeds the token budget.",
                budget=B,
                required=envelope_tokens + self.config.answer_reserve,
            )

        passages: List[Passage] = []
        covered: set = set()
        for ref in ref_ids:
            p = self.resolve(index, ref)
            if p is None:
                continue
            if p.chunk_ids and all(cid in covered for cid in p.chunk_ids):
                continue
            passages.append(p)
            covered.update(p.chunk_ids)

        truncated = any(p.capped for p in passages)
        chosen: List[Passage] = []
        used = 0
        for i, p in enumerate(passages):
            cost = self.budget.estimate(p.render(f"S{i + 1}"))
            if used + cost > available:
                truncated = True
                break
            chosen.append(p)
            used += cost

        if passages and not chosen:
            smallest = min(passages, key=lambda p: self.budget.estimate(p.render("S1")))
            cost = self.budget.estimate(smallest.render("S1"))
            if cost > available:
                raise BudgetExceeded(
                    "No selected passage fits the token budget.",
                    budget=B,
                    required=overhead + self.config.answer_reserve + cost,
                )
            chosen = [smallest]
            truncated = True

        if chosen:
            body = "".join(p.render(f"S{i + 1}") for i, p in enumerate(chosen))
        else:
            body = NO_SOURCES
        prompt = head + body + tail

        selected: List[str] = []
        for p in chosen:
            for cid in p.chunk_ids:
                if cid not in selected:
                    selected.append(cid)
        return PromptBundle(
            prompt=prompt,
            selected_chunk_ids=selected,
            token_estimate=self.budget.estimate(prompt),
            truncated=truncated,
        )
