"""Request de-duplication (stampede protection)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar, cast

from admincache.types import CacheKey

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestDeduplicator:
    """Keeps at most one fetch in flight per cache key.

    The fetch runs in its own task so that cancelling one caller does not
    abort the fetch the others are waiting on. The pending record is dropped
    by the task's first done-callback, before any joined caller resumes.
    """

    def __init__(self) -> None:
        self._pending: dict[CacheKey, asyncio.Task[Any]] = {}

    async def run_exclusive(
        self, key: CacheKey, fetch_fn: Callable[[], Awaitable[T]]
    ) -> T:
        """Join the fetch in flight for ``key``, or start one with ``fetch_fn``."""
        task = self._pending.get(key)
        if task is not None:
            logger.debug("Joining in-flight request for %s", key)
        else:
            task = asyncio.ensure_future(fetch_fn())
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._settled(k, t))
        return cast(T, await asyncio.shield(task))

    def _settled(self, key: CacheKey, task: asyncio.Task[Any]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the outcome retrieved; joined callers re-raise it themselves
        if not task.cancelled():
            task.exception()

    def is_pending(self, key: CacheKey) -> bool:
        return key in self._pending

    def pending_keys(self) -> set[CacheKey]:
        return set(self._pending)

    async def wait(self, key: CacheKey) -> None:
        """Wait for the fetch in flight for ``key`` to settle, ignoring its outcome."""
        task = self._pending.get(key)
        if task is not None:
            await asyncio.wait([task])

    def clear(self) -> None:
        """Forget every fetch in flight; the next call for a key starts a new one.

        Forgotten fetches run to completion for the callers already awaiting them.
        """
        self._pending.clear()
