import asyncio
import json
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

# Repo root = one level above tests/
REPO_ROOT = Path(__file__).resolve().parents[1]

# `corpus_rag`, `llm` and `cli` live at the repo root.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from corpus_rag.adapters.page import PageFrame, PageNode, PageSnapshot  # noqa: E402
from llm.base import Generator, Translator  # noqa: E402
from llm.session import ModelSession  # noqa: E402

SUMMARY_MARKER = "compact summaries for a search index"
RERANK_MARKER = "You rank passages"
TRANSLATE_MARKER = "Translate the following text"
INTENT_MARKER = "Classify the question"
SYNONYM_MARKER = "propose up to"

_ITEM_RE = re.compile(r'^### id=("(?:[^"\\]|\\.)*") kind=(\w+).*$', re.M)

Reply = Union[str, Exception, Callable[[str], str]]


def echo_summaries(prompt: str) -> str:
    """Answer a summary batch with each item's own leading text."""
    matches = list(_ITEM_RE.finditer(prompt))
    out = []
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(prompt)
        body = prompt[m.end():end].strip()
        words = re.findall(r"[a-z]+", body.lower())
        out.append({"id": json.loads(m.group(1)), "summary": body[:200] or "empty", "keyTerms": words[:3]})
    return json.dumps(out)


class ScriptedGenerator(Generator):
    """
    Test generator. Prompts are routed by marker text to a reply; a reply can
    be a string, an exception to raise, or a callable of the prompt.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Reply]] = None,
        default: Reply = "The answer.",
        pieces: Optional[List[Union[str, Exception]]] = None,
    ):
        self.replies: Dict[str, Reply] = {SUMMARY_MARKER: echo_summaries}
        self.replies.update(replies or {})
        self.default = default
        self.pieces = pieces
        self.prompts: List[str] = []
        self.languages: List[Optional[str]] = []
        self.destroyed = False

    def _reply(self, text: str) -> str:
        reply = self.default
        for marker, r in self.replies.items():
            if marker in text:
                reply = r
                break
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(text)
        return reply

    def calls_with(self, marker: str) -> int:
        return sum(1 for p in self.prompts if marker in p)

    async def prompt(self, text, *, output_language=None):
        self.prompts.append(text)
        self.languages.append(output_language)
        await asyncio.sleep(0)
        return self._reply(text)

    async def prompt_streaming(self, text, *, output_language=None):
        if self.pieces is None:
            yield await self.prompt(text, output_language=output_language)
            return
        self.prompts.append(text)
        self.languages.append(output_language)
        for p in self.pieces:
            await asyncio.sleep(0)
            if isinstance(p, Exception):
                raise p
            yield p

    def destroy(self):
        self.destroyed = True


class FakeTranslator(Translator):
    def __init__(self, availability="readily", result="traduit", fail=None):
        self.availability = availability
        self.result = result
        self.fail = fail
        self.calls = []

    async def can_translate(self, source, target):
        return self.availability

    async def translate(self, text, *, source, target):
        self.calls.append((text, source, target))
        if self.fail:
            raise self.fail
        return self.result


class FakeStore:
    def __init__(self, data=None, fail=None):
        self.data = data or {}
        self.fail = fail
        self.keys = []

    async def get(self, key):
        self.keys.append(key)
        if self.fail:
            raise self.fail
        return self.data.get(key)


class FakeBrowser:
    def __init__(self, history=None, bookmarks=None, downloads=None, granted=True, fail=None):
        self.history = history or []
        self.bookmarks = bookmarks or []
        self.downloads = downloads or []
        self.granted = granted
        self.fail = fail
        self.calls = []

    async def ensure_permission(self, name):
        self.calls.append(("permission", name))
        return self.granted

    async def search_history(self, text, start_time, max_results):
        self.calls.append(("history", text, start_time, max_results))
        if self.fail:
            raise self.fail
        return self.history[:max_results]

    async def search_bookmarks(self, text, max_results):
        self.calls.append(("bookmarks", text, max_results))
        if self.fail:
            raise self.fail
        return self.bookmarks[:max_results]

    async def search_downloads(self, max_results):
        self.calls.append(("downloads", max_results))
        if self.fail:
            raise self.fail
        return self.downloads[:max_results]


def text(s: str) -> PageNode:
    return PageNode(tag="#text", text=s)


def el(tag: str, *children: PageNode, **kw: Any) -> PageNode:
    return PageNode(tag=tag, children=list(children), **kw)


def page(*children: PageNode, url="https://example.com/", title="Example", origin="https://example.com") -> PageSnapshot:
    return PageSnapshot(title=title, url=url, origin=origin, root=el("body", *children))


def frame(origin: str, *children: PageNode) -> PageFrame:
    return PageFrame(origin=origin, root=el("html", *children))


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def session(generator):
    return ModelSession(generator, "en")
