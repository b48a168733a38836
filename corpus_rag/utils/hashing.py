from __future__ import annotations

from typing import Iterable

HASH_HEAD_CHARS = 16384


def djb2(s: str) -> str:
    """djb2 (xor variant), unsigned 32-bit, lower-case hex."""
    h = 5381
    for ch in s:
        h = (((h << 5) + h) ^ ord(ch)) & 0xFFFFFFFF
    return format(h, "x")


def content_fingerprint(title: str, text: str, head_chars: int = HASH_HEAD_CHARS) -> str:
    text = text or ""
    return djb2(f"{title or ''}\n{text[:head_chars]}\n{len(text)}")


def combine_hashes(hashes: Iterable[str]) -> str:
    return djb2("|".join(hashes))
