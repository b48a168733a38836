from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Mapping, Optional

from ..errors import Cancelled
from ..utils.cancel import CancellationToken
from .schema import Index

logger = logging.getLogger(__name__)


class IndexCache:
    """
    Process-wide LRU of built indexes, keyed by corpus key.

    A hit is only served when every document fingerprint still matches.
    At most one build runs per key: later callers await the running build
    and retry with their own build if that one was cancelled.
    """

    def __init__(self, max_entries: int = 20, max_chars_per_entry: int = 2_000_000) -> None:
        self.max_entries = max_entries
        self.max_chars_per_entry = max_chars_per_entry
        self._entries: "OrderedDict[str, Index]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def peek(self, key: str) -> Optional[Index]:
        return self._entries.get(key)

    def get(self, key: str, hashes: Optional[Mapping[str, str]] = None) -> Optional[Index]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if hashes is not None and dict(hashes) != entry.content_hashes:
            logger.info("index cache entry %s is stale; evicting", key)
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return entry

    def put(self, index: Index) -> bool:
        size = index.char_size()
        if size > self.max_chars_per_entry:
            logger.info("index %s too large to cache (%d chars)", index.corpus_key, size)
            return False
        self._entries[index.corpus_key] = index
        self._entries.move_to_end(index.corpus_key)
        while len(self._entries) > self.max_entries:
            old, _ = self._entries.popitem(last=False)
            logger.debug("evicted index %s", old)
        return True

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_build(
        self,
        key: str,
        hashes: Mapping[str, str],
        build: Callable[[], Awaitable[Index]],
        cancel: Optional[CancellationToken] = None,
    ) -> Index:
        while True:
            hit = self.get(key, hashes)
            if hit is not None:
                return hit

            running = self._inflight.get(key)
            if running is None:
                break
            waiting = asyncio.shield(running)
            try:
                index = await (cancel.guard(waiting) if cancel is not None else waiting)
            except Cancelled:
                if cancel is not None and cancel.cancelled:
                    raise
                logger.debug("peer build for %s was cancelled; building again", key)
                continue
            if dict(hashes) == index.content_hashes:
                return index
            # a peer built for different content; build our own
            break

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = fut
        try:
            index = await build()
        except BaseException as err:
            if not fut.done():
                if isinstance(err, (Cancelled, asyncio.CancelledError)):
                    fut.set_exception(Cancelled(str(err) or "build cancelled"))
                else:
                    fut.set_exception(err)
                fut.exception()  # mark retrieved when nobody is waiting
            raise
        finally:
            if self._inflight.get(key) is fut:
                del self._inflight[key]
        self.put(index)
        fut.set_result(index)
        return index
