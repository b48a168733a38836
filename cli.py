#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from corpus_rag.adapters.base import CorpusContext
from corpus_rag.adapters.page import PageNode, PageSnapshot
from corpus_rag.app import load_config, make_session
from corpus_rag.errors import CorpusRagError
from corpus_rag.logging_utils import setup_logging
from corpus_rag.pipeline import build_pipeline
from corpus_rag.utils.output import FORMATS, write_output

logger = logging.getLogger(__name__)


class JsonNotesStore:
    """Key-value store over a JSON file holding {note_id: {name, content, ...}}."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def get(self, key: str) -> Any:
        if key != "notes":
            return None
        return json.loads(self.path.read_text(encoding="utf-8"))


def snapshot_from_file(path: Path) -> PageSnapshot:
    """Turn a text/markdown file into a page tree: `#` lines become h1-h6, the rest paragraphs."""
    children: List[PageNode] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if not s:
            continue
        level = len(s) - len(s.lstrip("#"))
        if 1 <= level <= 6 and s[level:].startswith(" "):
            children.append(PageNode(tag=f"h{level}", children=[PageNode(tag="#text", text=s[level:].strip())]))
        else:
            children.append(PageNode(tag="p", children=[PageNode(tag="#text", text=s)]))
    url = path.resolve().as_uri()
    return PageSnapshot(title=path.stem, url=url, origin="file://", root=PageNode(tag="body", children=children))


def _corpus_from_args(args) -> tuple[str, CorpusContext, Dict[str, Any]]:
    providers: Dict[str, Any] = {}
    if args.notes:
        providers["notes_store"] = JsonNotesStore(Path(args.notes))
        return "notes", CorpusContext(note_ids=args.note_ids or None), providers
    if args.page:
        snap = snapshot_from_file(Path(args.page))
        return "page", CorpusContext(url=snap.url, snapshot=snap), providers
    pills = [{"label": f"Snippet {i}", "text": t} for i, t in enumerate(args.pill, start=1)]
    return "ctx", CorpusContext(pills=pills), providers


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="corpus-rag",
        description="Ask questions over local notes, a saved page or pasted snippets.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable DEBUG logs (to stderr).")
    parser.add_argument("--quiet", "-q", action="store_true", help="Reduce logs to WARN and above.")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines (stderr).")
    parser.add_argument("--config", type=str, default="config.yaml")

    p_ask = sub.add_parser("ask", help="Answer a question over one corpus")
    p_ask.add_argument("question", type=str)
    src = p_ask.add_mutually_exclusive_group(required=True)
    src.add_argument("--notes", type=str, help="JSON file with {note_id: {name, content}}")
    src.add_argument("--page", type=str, help="Text or markdown file treated as the active page")
    src.add_argument("--pill", action="append", default=[], help="Snippet text (repeatable)")
    p_ask.add_argument("--note-id", dest="note_ids", action="append", default=[], help="Restrict to these notes")

    p_ask.add_argument("--synonyms", action="store_true", help="Expand query terms before retrieval")
    p_ask.add_argument("--rerank", action="store_true", help="Let the model rerank lexical candidates")
    p_ask.add_argument("--top-m", type=int, default=None, help="Lexical candidates to keep")
    p_ask.add_argument("--rerank-k", type=int, default=None, help="Passages passed to the prompt")
    p_ask.add_argument("--translate", type=str, default=None, help="Translate the answer (e.g. fr, de)")
    p_ask.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")

    p_ask.add_argument("--model", default=None, help="Local model name (e.g., llama3.1:8b)")
    p_ask.add_argument(
        "--endpoint",
        default=None,
        help="Backend endpoint. Precedence: --endpoint > OLLAMA_HOST env > http://localhost:11434",
    )
    p_ask.add_argument("--allow-remote", action="store_true", help="Override offline guard to allow non-local endpoints")

    p_ask.add_argument("--out", type=str, default=None, help="Write result to a file (infers format from extension)")
    p_ask.add_argument("--format", type=str, default=None, choices=list(FORMATS), help="Output format")
    p_ask.add_argument("--no-stream", action="store_true", help="Print the answer only when complete")

    args = parser.parse_args(argv)

    if args.verbose and args.quiet:
        print("Cannot use --verbose and --quiet together.", file=sys.stderr)
        return 2

    try:
        overrides: Dict[str, Dict[str, Any]] = {"retrieval": {}, "generation": {}}
        if args.synonyms:
            overrides["retrieval"]["use_synonyms"] = True
        if args.rerank:
            overrides["retrieval"]["use_llm"] = True
        if args.top_m is not None:
            overrides["retrieval"]["top_m"] = args.top_m
        if args.rerank_k is not None:
            overrides["retrieval"]["rerank_k"] = args.rerank_k
        if args.model:
            overrides["generation"]["model"] = args.model
        if args.endpoint:
            overrides["generation"]["endpoint"] = args.endpoint
        cfg = load_config(args.config, overrides)
    except CorpusRagError as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2

    level = "DEBUG" if args.verbose else "WARNING" if args.quiet else cfg.logging.level
    setup_logging(level=level, json_logs=args.log_json or cfg.logging.json_logs)
    logger.debug("CLI args parsed: %s", vars(args))

    try:
        session = make_session(cfg, allow_remote=args.allow_remote)
    except RuntimeError as e:
        print(str(e), file=sys.stderr)
        return 2

    corpus, context, providers = _corpus_from_args(args)
    pipeline = build_pipeline(cfg, session, **providers)
    stream = not (args.no_stream or args.quiet or args.translate)

    def _print_piece(piece: str) -> None:
        sys.stdout.write(piece)
        sys.stdout.flush()

    try:
        ans = asyncio.run(
            pipeline.answer(
                args.question,
                corpus,
                context,
                timeout=args.timeout,
                target_language=args.translate,
                on_chunk=_print_piece if stream else None,
            )
        )
    except CorpusRagError as e:
        logger.error("%s: %s", e.code, e)
        return 1
    finally:
        pipeline.close()

    if args.out:
        target = write_output(args.question, ans, out_path=args.out, fmt=args.format)
        if not args.quiet:
            print(f"[saved] {target}", file=sys.stderr)

    if not args.quiet:
        if stream:
            print()
        else:
            print(ans.text)
        print("\n=== SOURCES ===")
        for r in ans.used_refs:
            print(f"- {r.doc_id} | {r.heading or '-'} | {r.chunk_id}")
        for w in ans.warnings:
            print(f"[warning] {w}", file=sys.stderr)
        timers = ans.trace.get("timers_ms")
        if timers:
            print(f"timers_ms: {timers}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
