from __future__ import annotations

import datetime
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..index.schema import Answer

FORMATS = ("json", "md", "txt")


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _slug(s: str, max_len: int = 60) -> str:
    s = s.strip().lower()
    s = re.sub(r"[^a-z0-9\-\s_]+", "", s)
    s = re.sub(r"[\s_]+", "-", s)
    return s[:max_len].strip("-") or "query"


def infer_format(out_path: Optional[str], fmt: Optional[str]) -> str:
    if fmt:
        return fmt.lower()
    if out_path:
        ext = Path(out_path).suffix.lower().lstrip(".")
        if ext in FORMATS:
            return ext
    return "json"


def ensure_outpath(out_path: Optional[str], fmt: str, save_dir: Optional[str], question: str) -> Path:
    if out_path:
        p = Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base_dir = Path(save_dir or "outputs")
    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir / f"{_timestamp()}_{_slug(question)}.{fmt}"


def answer_payload(question: str, ans: Answer) -> Dict[str, Any]:
    return {
        "question": question,
        "answer": ans.text,
        "language": ans.language,
        "translated": ans.translated,
        "confidence": ans.confidence,
        "ref_ids": ans.ref_ids,
        "sources": [r.model_dump() for r in ans.used_refs],
        "truncated": bool(ans.prompt and ans.prompt.truncated),
        "warnings": ans.warnings,
        "trace": ans.trace,
    }


def _source_line(src: Dict[str, Any]) -> str:
    heading = src.get("heading") or "-"
    return f"{src.get('doc_id')} | {heading} | {src.get('chunk_id')}"


def as_markdown(obj: Dict[str, Any]) -> str:
    lines: List[str] = [f"# {obj['question']}\n"]
    if obj.get("answer"):
        lines += [obj["answer"].strip(), ""]
    lines.append(f"_confidence: {obj.get('confidence')}_\n")
    if obj.get("sources"):
        lines.append("## Sources")
        lines += [f"- `{_source_line(s)}`" for s in obj["sources"]]
        lines.append("")
    if obj.get("warnings"):
        lines.append("## Warnings")
        lines += [f"- {w}" for w in obj["warnings"]]
        lines.append("")
    timers = (obj.get("trace") or {}).get("timers_ms")
    if timers:
        lines += ["## Timers (ms)", "```json", json.dumps(timers, indent=2), "```"]
    return "\n".join(lines).strip() + "\n"


def as_text(obj: Dict[str, Any]) -> str:
    lines: List[str] = [f"QUESTION: {obj['question']}", "", (obj.get("answer") or "").strip(), ""]
    if obj.get("sources"):
        lines.append("SOURCES:")
        lines += [f"- {_source_line(s)}" for s in obj["sources"]]
        lines.append("")
    for w in obj.get("warnings") or []:
        lines.append(f"WARNING: {w}")
    timers = (obj.get("trace") or {}).get("timers_ms")
    if timers:
        lines.append("TIMERS_MS: " + json.dumps(timers))
    return "\n".join(lines).strip() + "\n"


def write_output(
    question: str,
    ans: Answer,
    out_path: Optional[str] = None,
    fmt: Optional[str] = None,
    save_dir: Optional[str] = None,
) -> Path:
    fmt2 = infer_format(out_path, fmt)
    if fmt2 not in FORMATS:
        raise ValueError(f"Unsupported format: {fmt2}")
    target = ensure_outpath(out_path, fmt2, save_dir, question)
    obj = answer_payload(question, ans)
    if fmt2 == "json":
        target.write_text(json.dumps(obj, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
    elif fmt2 == "md":
        target.write_text(as_markdown(obj), encoding="utf-8")
    else:
        target.write_text(as_text(obj), encoding="utf-8")
    return target
