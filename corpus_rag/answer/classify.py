from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..errors import Cancelled, CorpusRagError
from ..index.schema import QueryClassification
from ..utils.cancel import CancellationToken

if TYPE_CHECKING:
    from llm.session import ModelSession

logger = logging.getLogger(__name__)

INTENTS = ("fact", "definition", "howto", "comparison", "quote")

# first match wins
_RULES = [
    ("definition", re.compile(r"\b(define[sd]?|definitions?)\b")),
    ("howto", re.compile(r"\bhow\b")),
    ("comparison", re.compile(r"\b(compare[sd]?|comparing|comparison|vs|versus|differences?)\b")),
    ("quote", re.compile(r"\b(quote[sd]?|cite[sd]?|citations?|exact words)\b")),
]

INTENT_PROMPT = """Classify the question into exactly one intent:
fact, definition, howto, comparison, quote.
Answer with the single intent word only.

Question: {query}"""


def _result(intent: str) -> QueryClassification:
    return QueryClassification(intent=intent, breadth="wide" if intent == "comparison" else "narrow")


def classify(query: str) -> QueryClassification:
    ql = (query or "").lower()
    for intent, rx in _RULES:
        if rx.search(ql):
            return _result(intent)
    return _result("fact")


async def classify_with_model(
    query: str,
    session: Optional["ModelSession"],
    cancel: Optional[CancellationToken] = None,
) -> QueryClassification:
    """Heuristic first; the model only gets a say when the heuristic falls through to `fact`."""
    base = classify(query)
    if base.intent != "fact" or session is None or not session.available:
        return base
    try:
        raw = await session.prompt(INTENT_PROMPT.format(query=query), cancel)
    except Cancelled:
        raise
    except CorpusRagError as err:
        logger.info("model intent classification failed: %s", err)
        return base
    word = re.sub(r"[^a-z]", "", (raw or "").strip().split("\n")[0].lower())
    if word not in INTENTS:
        logger.debug("discarding model intent %r", raw)
        return base
    return _result(word)
