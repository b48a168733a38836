import json
import logging

from corpus_rag.index.schema import Answer, PromptBundle, UsedRef
from corpus_rag.logging_utils import setup_logging
from corpus_rag.utils.log import TraceLog
from corpus_rag.utils.output import infer_format, write_output


def _answer():
    return Answer(
        text="It is blue.",
        ref_ids=["d1::sec-1"],
        used_refs=[UsedRef(doc_id="d1", chunk_id="d1::chunk-0", heading="# Colour")],
        prompt=PromptBundle(prompt="p", truncated=True),
        confidence="low",
        language="en",
        warnings=["summary fallback"],
        trace={"timers_ms": {"total_ms": 12}},
    )


def test_infer_format():
    assert infer_format("out.md", None) == "md"
    assert infer_format("out.bin", None) == "json"
    assert infer_format(None, "TXT") == "txt"


def test_write_json(tmp_path):
    target = write_output("What colour?", _answer(), out_path=str(tmp_path / "a" / "out.json"))
    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["answer"] == "It is blue."
    assert data["sources"][0]["chunk_id"] == "d1::chunk-0"
    assert data["truncated"] is True


def test_write_markdown_and_text(tmp_path):
    md = write_output("What colour?", _answer(), out_path=str(tmp_path / "out.md")).read_text(encoding="utf-8")
    assert md.startswith("# What colour?")
    assert "- `d1 | # Colour | d1::chunk-0`" in md
    assert "## Warnings" in md
    txt = write_output("What colour?", _answer(), fmt="txt", save_dir=str(tmp_path)).read_text(encoding="utf-8")
    assert "QUESTION: What colour?" in txt
    assert "WARNING: summary fallback" in txt


def test_trace_log_appends_lines(tmp_path):
    log = TraceLog(tmp_path / "logs" / "queries.jsonl")
    log.write({"a": 1})
    log.write({"a": 2})
    lines = (tmp_path / "logs" / "queries.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(x)["a"] for x in lines] == [1, 2]


def test_setup_logging_precedence(monkeypatch):
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        monkeypatch.setenv("CORPUS_RAG_LOG_LEVEL", "ERROR")
        assert setup_logging() == logging.ERROR
        assert setup_logging("debug") == logging.DEBUG
        assert setup_logging("DEBUG", json_logs=True) == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.WARNING
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
        root.setLevel(saved[0])
        for h in saved[1]:
            root.addHandler(h)
