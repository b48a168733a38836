from __future__ import annotations

import math
from typing import Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")

DEFAULT_CHARS_PER_TOKEN = 4


def estimate_tokens_from_chars(char_count: int, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    n = max(0, int(char_count or 0))
    return math.ceil(n / max(1, int(chars_per_token)))


def estimate_tokens(text: str, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    return estimate_tokens_from_chars(len(text or ""), chars_per_token)


def total_tokens(texts: Iterable[str], chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    return sum(estimate_tokens(t, chars_per_token) for t in texts or [])


def hard_cap_text(text: str, max_tokens: int, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> str:
    """Truncate `text` to roughly `max_tokens`, ending with an ellipsis when cut."""
    max_chars = max(0, int(max_tokens) * int(chars_per_token))
    s = text or ""
    if len(s) <= max_chars:
        return s
    return s[: max(0, max_chars - 1)].rstrip() + "…"


class TokenBudget:
    """
    Token accounting for prompts.

    The estimator maps a character count to a token count. It is the single
    place to plug in a real tokenizer; every caller goes through `estimate`.
    """

    def __init__(
        self,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
        estimator: Optional[Callable[[int], int]] = None,
    ) -> None:
        self.chars_per_token = max(1, int(chars_per_token))
        self._estimator = estimator

    def estimate_chars(self, char_count: int) -> int:
        if self._estimator is not None:
            return max(0, int(self._estimator(char_count)))
        return estimate_tokens_from_chars(char_count, self.chars_per_token)

    def estimate(self, text: str) -> int:
        return self.estimate_chars(len(text or ""))

    def total(self, texts: Iterable[str]) -> int:
        return sum(self.estimate(t) for t in texts or [])

    def hard_cap(self, text: str, max_tokens: int) -> str:
        """Longest prefix (plus an ellipsis) whose estimate stays within `max_tokens`."""
        s = text or ""
        if self.estimate(s) <= max_tokens:
            return s
        lo, hi = 0, len(s)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self.estimate_chars(mid) <= max_tokens:
                lo = mid
            else:
                hi = mid - 1
        return s[: max(0, lo - 1)].rstrip() + "…"

    def prune(
        self,
        items: List[T],
        get_text: Callable[[T], str],
        max_tokens: int,
        key: Optional[Callable[[T], object]] = None,
    ) -> List[T]:
        """Keep the highest-priority prefix of `items` (ordered by `key`) that fits."""
        ordered = sorted(items, key=key) if key is not None else list(items)
        kept: List[T] = []
        used = 0
        for it in ordered:
            t = self.estimate(get_text(it))
            if used + t > max_tokens:
                break
            kept.append(it)
            used += t
        return kept


def prune_to_budget(
    items: List[T],
    get_text: Callable[[T], str],
    max_tokens: int,
    key: Optional[Callable[[T], object]] = None,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> List[T]:
    return TokenBudget(chars_per_token).prune(items, get_text, max_tokens, key=key)
