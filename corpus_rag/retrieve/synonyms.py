from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from ..errors import Cancelled, CorpusRagError
from ..index.schema import Index
from ..utils.cancel import CancellationToken
from ..utils.jsonparse import parse_string_list
from .lexical import tokenize

if TYPE_CHECKING:
    from llm.session import ModelSession

logger = logging.getLogger(__name__)

STATIC_SYNONYMS: Dict[str, List[str]] = {
    "results": ["findings", "outcomes", "observations"],
    "methods": ["methodology", "approach", "procedure", "technique"],
    "discussion": ["analysis", "interpretation", "insights"],
    "conclusion": ["summary", "wrap-up", "closing"],
    "limitation": ["constraints", "drawbacks", "weaknesses"],
    "performance": ["accuracy", "efficiency"],
    "compare": ["versus", "difference"],
}

MAX_TOPICS = 40

SYNONYM_PROMPT = """Given the question tokens and the document topic terms, propose up to {limit} short synonyms or closely related terms taken from the topic set only.
Return a JSON array of strings.

Question tokens: {tokens}
Topic terms: {topics}"""


def index_topics(index: Index, limit: int = MAX_TOPICS) -> List[str]:
    seen: List[str] = []
    for s in index.summaries:
        for t in s.key_terms:
            t = t.lower()
            if t not in seen:
                seen.append(t)
                if len(seen) >= limit:
                    return seen
    return seen


class SynonymExpander:
    def __init__(self, table: Optional[Dict[str, List[str]]] = None) -> None:
        self.table = STATIC_SYNONYMS if table is None else table

    def static_terms(self, tokens: List[str]) -> List[str]:
        out: List[str] = []
        for t in tokens:
            out.extend(s.lower() for s in self.table.get(t, []))
        return out

    async def expand(
        self,
        query: str,
        index: Index,
        *,
        use_llm: bool = False,
        limit: int = 8,
        session: Optional["ModelSession"] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]:
        limit = max(1, int(limit))
        tokens = tokenize(query, stop_words=())
        base = set(tokens)
        terms = self.static_terms(tokens)

        if use_llm and session is not None and session.available:
            topics = index_topics(index)
            if topics:
                prompt = SYNONYM_PROMPT.format(limit=limit, tokens=", ".join(tokens), topics=", ".join(topics))
                allowed = set(topics)
                try:
                    proposed = parse_string_list(await session.prompt(prompt, cancel))
                    terms.extend(p.lower() for p in proposed if p.lower() in allowed)
                except Cancelled:
                    raise
                except (CorpusRagError, ValueError) as err:
                    logger.warning("model synonym expansion failed; using static only: %s", err)

        out: List[str] = []
        for t in terms:
            if t and t not in base and t not in out:
                out.append(t)
        return out[:limit]
