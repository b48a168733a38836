import pytest

from corpus_rag.answer.classify import classify, classify_with_model
from llm.session import ModelSession

from conftest import INTENT_MARKER, ScriptedGenerator


@pytest.mark.parametrize(
    "query, intent, breadth",
    [
        ("compare A vs B", "comparison", "wide"),
        ("What are the differences between X and Y?", "comparison", "wide"),
        ("Define entropy", "definition", "narrow"),
        ("How do I install it?", "howto", "narrow"),
        ("Quote the exact words about pricing", "quote", "narrow"),
        ("When was it released?", "fact", "narrow"),
        ("", "fact", "narrow"),
    ],
)
def test_heuristic_rules(query, intent, breadth):
    c = classify(query)
    assert (c.intent, c.breadth) == (intent, breadth)


def test_first_rule_wins():
    # "how" and "compare" both match; howto is checked first
    assert classify("how do they compare").intent == "howto"


@pytest.mark.asyncio
async def test_model_refines_fact_queries():
    gen = ScriptedGenerator({INTENT_MARKER: "Definition\n"})
    c = await classify_with_model("entropy?", ModelSession(gen))
    assert c.intent == "definition"


@pytest.mark.asyncio
async def test_invalid_model_answer_is_discarded():
    gen = ScriptedGenerator({INTENT_MARKER: "banana"})
    c = await classify_with_model("entropy?", ModelSession(gen))
    assert c.intent == "fact"


@pytest.mark.asyncio
async def test_model_not_asked_when_heuristic_matches():
    gen = ScriptedGenerator({INTENT_MARKER: "quote"})
    c = await classify_with_model("compare A vs B", ModelSession(gen))
    assert c.intent == "comparison"
    assert gen.prompts == []


@pytest.mark.asyncio
async def test_model_failure_keeps_heuristic():
    gen = ScriptedGenerator({INTENT_MARKER: RuntimeError("down")})
    c = await classify_with_model("entropy?", ModelSession(gen))
    assert c.intent == "fact"
