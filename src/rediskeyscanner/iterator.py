"""Paged keyspace iteration over the SCAN cursor."""

import logging
from typing import Callable, List, Optional

from .errors import translate_redis_errors

logger = logging.getLogger("rediskeyscanner.iterator")


class PatternIterator:
    """
    Async iterator of key-name batches matching a glob pattern.

    Each batch is one ``SCAN`` page. Iteration is lazy, finite and cannot be
    restarted. Redis cursors give no snapshot isolation: under concurrent
    writes a key may be delivered more than once, and keys added or removed
    during the scan may or may not be seen. Counts built on top of this
    iterator are counts of keys delivered, not of distinct keys.

    ``pause()`` stops delivery. A page whose request is already on the wire
    when ``pause()`` is called is dropped rather than delivered; batches
    delivered before the pause are unaffected.

    ``should_stop`` is checked before every SCAN round trip, including the
    ones that come back empty and are never delivered. When it returns True
    the iterator pauses itself.
    """

    def __init__(self, client, pattern: str, count: int, should_stop: Optional[Callable[[], bool]] = None):
        """
        Args:
            client: redis.asyncio client (anything with an async ``scan``)
            pattern: Glob pattern passed as ``MATCH``
            count: Page size hint passed as ``COUNT``
            should_stop: Called before each SCAN request; True pauses the iterator
        """
        self._client = client
        self.pattern = pattern
        self.count = count
        self._should_stop = should_stop
        self._cursor = 0
        self._started = False
        self._paused = False
        self._exhausted = False
        self.pages_requested = 0

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def exhausted(self) -> bool:
        """True once the cursor has returned to 0 without a pause."""
        return self._exhausted

    def pause(self) -> None:
        self._paused = True

    def __aiter__(self) -> "PatternIterator":
        return self

    async def __anext__(self) -> List[str]:
        while True:
            if self._paused or self._exhausted:
                raise StopAsyncIteration

            if self._started and self._cursor == 0:
                self._exhausted = True
                logger.debug(f"Keyspace exhausted for pattern {self.pattern!r} after {self.pages_requested} pages")
                raise StopAsyncIteration

            if self._should_stop is not None and self._should_stop():
                self._paused = True
                logger.debug(f"Iteration stopped by caller after {self.pages_requested} pages")
                raise StopAsyncIteration

            self._started = True
            self.pages_requested += 1
            with translate_redis_errors("SCAN"):
                cursor, keys = await self._client.scan(cursor=self._cursor, match=self.pattern, count=self.count)
            self._cursor = int(cursor)

            if self._paused:
                raise StopAsyncIteration

            # SCAN may legitimately return empty pages before the cursor wraps
            if keys:
                return list(keys)
