import re
from typing import List, Pattern, Tuple

# list markers seen in rendered pages and pasted notes (U+F0B7 is the Symbol-font bullet)
BULLETS = "•◦‣▪▸►●○■□·\uf0b7"

_RULES: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"\r\n?"), "\n"),
    (re.compile("[\u200b\u200c\u200d\u2060\ufeff\u00ad]"), ""),
    (re.compile("[\u00a0\u202f]"), " "),
    (re.compile(rf"^([ \t]*)[{re.escape(BULLETS)}][ \t]*", re.M), r"\1- "),
    # "configu-\nration" -> "configuration"
    (re.compile(r"(\w)-\n(\w)"), r"\1\2"),
    (re.compile(r"[ \t]{2,}"), " "),
    (re.compile(r"[ \t]+\n"), "\n"),
    (re.compile(r"\n{3,}"), "\n\n"),
]


def collapse_inline(s: str) -> str:
    """Collapse runs of whitespace inside one rendered text node."""
    return re.sub(r"\s+", " ", s or "").strip()


def normalize_text(s: str) -> str:
    """Tidy document text before chunking; line structure is kept."""
    if not s:
        return s
    for pattern, repl in _RULES:
        s = pattern.sub(repl, s)
    return s.strip()
