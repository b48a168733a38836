"""
Active page adapter.

The page arrives as a plain node tree (`PageSnapshot`) produced by whatever
does the capture (browser bridge, headless renderer, test fixture). A
synchronous visitor turns it into visible text plus headings.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Literal, Optional, Protocol, Tuple

from ..errors import AdapterError
from ..index.schema import Document
from ..ingest.clean import collapse_inline, normalize_text
from .base import ChunkOptions, CorpusAdapter, CorpusContext

logger = logging.getLogger(__name__)

CaptureDepth = Literal["document", "shadow", "all"]

REJECTED_TAGS = {
    "script", "style", "noscript", "template", "svg", "canvas",
    "video", "audio", "img", "picture", "object", "embed",
}
HEADING_TAGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "aside", "header", "footer", "nav",
    "li", "ul", "ol", "dl", "dt", "dd", "table", "tr", "td", "th", "pre",
    "blockquote", "figure", "figcaption", "br", "hr", "body", "form", "fieldset",
} | set(HEADING_TAGS)
TEXT_TAG = "#text"


@dataclass
class PageNode:
    tag: str
    text: str = ""
    children: List["PageNode"] = field(default_factory=list)
    hidden: bool = False
    style: Dict[str, str] = field(default_factory=dict)
    shadow_root: Optional["PageNode"] = None
    frame: Optional["PageFrame"] = None

    def is_hidden(self) -> bool:
        if self.hidden:
            return True
        display = (self.style.get("display") or "").strip().lower()
        visibility = (self.style.get("visibility") or "").strip().lower()
        return display == "none" or visibility in ("hidden", "collapse")


@dataclass
class PageFrame:
    origin: str
    root: Optional[PageNode] = None


@dataclass
class PageSnapshot:
    title: str
    url: str
    origin: str
    root: PageNode
    language: Optional[str] = None


class PageCapture(Protocol):
    async def __call__(self, url: Optional[str] = None) -> PageSnapshot:
        ...


class PageTextVisitor:
    """Walks a snapshot and yields ("text" | "heading", value) items in source order."""

    def __init__(self, origin: str, capture_depth: CaptureDepth = "all") -> None:
        self.origin = origin
        self.capture_depth = capture_depth
        self.skipped_iframes = 0

    def _enter_shadow(self) -> bool:
        return self.capture_depth in ("shadow", "all")

    def _enter_frame(self, frame: PageFrame) -> bool:
        if frame.root is None:
            return False
        if frame.origin != self.origin:
            self.skipped_iframes += 1
            return False
        return self.capture_depth == "all"

    def walk(self, node: PageNode) -> Iterator[Tuple[str, str]]:
        tag = (node.tag or "").lower()
        if tag in REJECTED_TAGS or node.is_hidden():
            return
        if tag == TEXT_TAG:
            s = collapse_inline(node.text)
            if s:
                yield ("text", s)
            return
        if tag in HEADING_TAGS:
            s = collapse_inline(" ".join(t for kind, t in self._inline(node) if kind == "text"))
            if s:
                yield ("heading", "#" * HEADING_TAGS[tag] + " " + s)
            return

        block = tag in BLOCK_TAGS
        if block:
            yield ("break", "")
        if node.text:
            s = collapse_inline(node.text)
            if s:
                yield ("text", s)
        if node.shadow_root is not None and self._enter_shadow():
            yield from self.walk(node.shadow_root)
        if node.frame is not None and self._enter_frame(node.frame):
            yield ("break", "")
            yield from self.walk(node.frame.root)
        for child in node.children:
            yield from self.walk(child)
        if block:
            yield ("break", "")

    def _inline(self, node: PageNode) -> Iterator[Tuple[str, str]]:
        for kind, value in self.walk(PageNode(tag="span", children=node.children, text=node.text)):
            yield (kind, value)

    def render(self, root: PageNode) -> Tuple[str, List[str]]:
        """Return (text, headings). Headings appear in the text as markdown lines."""
        lines: List[str] = []
        headings: List[str] = []
        current: List[str] = []

        def flush() -> None:
            if current:
                lines.append(" ".join(current))
                current.clear()

        for kind, value in self.walk(root):
            if kind == "text":
                current.append(value)
            elif kind == "break":
                flush()
            else:
                flush()
                if lines:
                    lines.append("")
                lines.append(value)
                headings.append(value.lstrip("#").strip())
        flush()
        return normalize_text("\n".join(lines)) or "", headings

    def texts(self, root: PageNode) -> Iterator[str]:
        return (v for kind, v in self.walk(root) if kind == "text")

    def headings(self, root: PageNode) -> Iterator[str]:
        return (v.lstrip("#").strip() for kind, v in self.walk(root) if kind == "heading")


class ActivePageAdapter(CorpusAdapter):
    kind = "page"
    source_kind = "page"
    default_chunking = ChunkOptions(max_chunk_chars=12000, overlap_chars=500, min_chunk_chars=1000)
    namespace_chunks = False

    def __init__(self, capture: Optional[PageCapture] = None, capture_depth: CaptureDepth = "all") -> None:
        self.capture = capture
        self.capture_depth = capture_depth

    def get_index_key(self, context: CorpusContext) -> str:
        url = (context.url or "").strip()
        return f"page:{url}" if url else "page:active"

    async def _snapshot(self, context: CorpusContext) -> PageSnapshot:
        if isinstance(context.snapshot, PageSnapshot):
            return context.snapshot
        if self.capture is None:
            raise AdapterError("No page capture is configured.", source=self.kind)
        try:
            snap = await self.capture(context.url)
        except AdapterError:
            raise
        except Exception as err:  # noqa: BLE001 - capture bridges raise anything
            raise AdapterError(f"Page capture failed: {err}", source=self.kind) from err
        if not isinstance(snap, PageSnapshot):
            raise AdapterError("Page capture returned no snapshot.", source=self.kind)
        return snap

    async def list_documents(self, context: CorpusContext) -> List[Document]:
        snap = await self._snapshot(context)
        visitor = PageTextVisitor(snap.origin, self.capture_depth)
        try:
            text, headings = visitor.render(snap.root)
        except RecursionError as err:
            raise AdapterError("Page tree is too deep to capture.", source=self.kind) from err

        if visitor.skipped_iframes:
            logger.debug("skipped %d cross-origin frames on %s", visitor.skipped_iframes, snap.url)
        doc = Document(
            id=snap.url or "active-page",
            title=snap.title or "Untitled Page",
            url=snap.url or None,
            created_at=time.time(),
            language=snap.language,
            headings=headings,
            text=text,
            size_bytes=len(text.encode("utf-8")),
            source_kind="page",
            extra={"skipped_iframes": visitor.skipped_iframes, "capture_depth": self.capture_depth},
        )
        return self.apply_limits([doc], context)
