"""Cache store - query results keyed by endpoint+params, with subscribers.

Provides:
- request(): cached fetch with de-duplication
- subscribe(): change notifications, drives background refetch and eviction
- invalidate(): tag-based stale marking with stale-while-revalidate
- refetch(), prefetch(), wait_idle(), clear(): lifecycle helpers
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass, replace
from typing import Any

from admincache.dedup import RequestDeduplicator
from admincache.duration import duration_seconds
from admincache.errors import AdminCacheError, ParseError
from admincache.tag_index import TagIndex
from admincache.tags import serialize_tag
from admincache.types import (
    CacheEntry,
    CacheKey,
    Duration,
    FetchFn,
    Status,
    Tag,
    TagsProvider,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[CacheEntry[Any]], None]


@dataclass(frozen=True, slots=True)
class _Query:
    """What it takes to (re)fetch one key."""

    tags: TagsProvider
    fetch_fn: FetchFn


def _now_ms() -> int:
    return int(time.time() * 1000)


class CacheStore:
    """Process-wide query cache, owned and passed around explicitly.

    Entries are immutable snapshots; every change replaces the entry and
    notifies the key's subscribers with the new snapshot, so status and data
    are always observed together.
    """

    def __init__(
        self,
        *,
        keep_unused_for: Duration = "60s",
        tag_index: TagIndex | None = None,
        deduplicator: RequestDeduplicator | None = None,
    ) -> None:
        self._keep_unused_for = duration_seconds(keep_unused_for)
        self._index = tag_index if tag_index is not None else TagIndex()
        self._deduplicator = (
            deduplicator if deduplicator is not None else RequestDeduplicator()
        )
        self._entries: dict[CacheKey, CacheEntry[Any]] = {}
        self._queries: dict[CacheKey, _Query] = {}
        self._subscribers: dict[CacheKey, dict[int, Subscriber]] = {}
        self._evictions: dict[CacheKey, asyncio.TimerHandle] = {}
        self._refetch_after_settle: set[CacheKey] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._tokens = itertools.count()
        self._generation = 0

    @property
    def tag_index(self) -> TagIndex:
        return self._index

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    # -------------------------------------------------------------------------
    # Reads and subscriptions
    # -------------------------------------------------------------------------

    def get(self, key: CacheKey) -> CacheEntry[Any] | None:
        """Current snapshot for ``key``, or None. Never blocks."""
        return self._entries.get(key)

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def subscribe(self, key: CacheKey, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with every new snapshot of ``key``.

        Returns an idempotent unsubscribe function. Unsubscribing while a
        fetch is in flight lets the fetch finish and cache its result, but the
        callback is not called again.
        """
        token = next(self._tokens)
        self._subscribers.setdefault(key, {})[token] = callback
        self._cancel_eviction(key)
        entry = self._entries.get(key) or CacheEntry(key=key)
        self._entries[key] = replace(
            entry, subscriber_count=entry.subscriber_count + 1
        )

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key)
            if callbacks is None or callbacks.pop(token, None) is None:
                return
            if not callbacks:
                del self._subscribers[key]
            current = self._entries.get(key)
            if current is None:
                return
            count = max(current.subscriber_count - 1, 0)
            self._entries[key] = replace(current, subscriber_count=count)
            if count == 0:
                self._schedule_eviction(key)

        return unsubscribe

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def request(
        self,
        key: CacheKey,
        tags: TagsProvider,
        fetch_fn: FetchFn,
    ) -> Any:
        """Return cached data for ``key``, fetching it if missing or stale.

        A fresh entry is returned without calling ``fetch_fn``. A fetch in
        flight for the key is joined. Fetch errors are stored on the entry
        (previous data is kept) and re-raised.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh:
            logger.debug("Cache hit for %s", key)
            return entry.data

        query = _Query(tags=tags, fetch_fn=fetch_fn)
        if not self._deduplicator.is_pending(key):
            self._queries[key] = query
        return await self._deduplicator.run_exclusive(
            key, lambda: self._fetch(key, query)
        )

    def prefetch(
        self,
        key: CacheKey,
        tags: TagsProvider,
        fetch_fn: FetchFn,
    ) -> asyncio.Task[Any] | None:
        """Start a background request unless the entry is fresh.

        Failures are stored on the entry and logged, not raised.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh:
            return None
        return self._spawn(self._quiet(key, self.request(key, tags, fetch_fn)))

    async def refetch(
        self,
        key: CacheKey,
        tags: TagsProvider | None = None,
        fetch_fn: FetchFn | None = None,
    ) -> Any:
        """Fetch ``key`` again, fresh or not.

        Uses the function that last produced the entry, or ``fetch_fn`` when
        the key was never fetched. Waits for a fetch already in flight, so the
        result is never older than the call.
        """
        if key not in self._queries:
            if tags is None or fetch_fn is None:
                raise KeyError(key)
            self._queries[key] = _Query(tags=tags, fetch_fn=fetch_fn)
        await self._deduplicator.wait(key)
        query = self._queries.get(key)
        if query is None:
            raise KeyError(key)
        return await self._deduplicator.run_exclusive(
            key, lambda: self._fetch(key, query)
        )

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate(self, tags: Iterable[Tag]) -> set[CacheKey]:
        """Mark every entry reached by ``tags`` stale.

        Entries with subscribers refetch in the background right away and keep
        showing their previous data until the refetch settles. The rest refetch
        on their next request.
        """
        tags = [Tag(tuple(t)) for t in tags]
        keys = self._index.keys_for_tags(tags)
        logger.debug(
            "Invalidating %s reached %d entries",
            [serialize_tag(t) for t in tags],
            len(keys),
        )
        for key in keys:
            entry = self._entries.get(key)
            if entry is None:
                continue
            self._entries[key] = replace(entry, stale=True)
            if self._deduplicator.is_pending(key):
                # The in-flight result may predate the write
                self._refetch_after_settle.add(key)
            elif entry.subscriber_count > 0 and key in self._queries:
                self._spawn(self._background_fetch(key))
        return keys

    async def wait_idle(self) -> None:
        """Wait until no background fetch is running."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def clear(self) -> None:
        """Drop all entries, index records, timers and background fetches."""
        self._generation += 1
        for handle in self._evictions.values():
            handle.cancel()
        for task in self._background_tasks:
            task.cancel()
        self._evictions.clear()
        self._entries.clear()
        self._queries.clear()
        self._subscribers.clear()
        self._refetch_after_settle.clear()
        self._index.clear()
        self._deduplicator.clear()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _fetch(self, key: CacheKey, query: _Query) -> Any:
        generation = self._generation
        self._refetch_after_settle.discard(key)
        before = self._entries.get(key) or CacheEntry(key=key)
        self._commit(replace(before, status=Status.LOADING))
        logger.debug("Fetching %s", key)

        try:
            data = await query.fetch_fn()
        except asyncio.CancelledError:
            if generation == self._generation and key in self._entries:
                self._commit(replace(self._entries[key], status=before.status))
            raise
        except Exception as exc:
            if generation == self._generation:
                self._settle_error(key, query, exc)
            raise

        if generation == self._generation:
            self._settle_success(key, query, data)
        return data

    def _settle_success(self, key: CacheKey, query: _Query, data: Any) -> None:
        current = self._entries.get(key) or CacheEntry(key=key)
        tags = self._index.index(key, self._resolve_tags(query, data))
        stale = key in self._refetch_after_settle
        self._commit(
            replace(
                current,
                status=Status.SUCCESS,
                data=data,
                error=None,
                fetched_at=_now_ms(),
                tags=tags,
                stale=stale,
            )
        )
        self._after_settle(key, stale)

    def _settle_error(self, key: CacheKey, query: _Query, exc: Exception) -> None:
        if isinstance(exc, ParseError):
            logger.error("Malformed response for %s: %s", key, exc)
        else:
            logger.debug("Fetch for %s failed: %r", key, exc)

        current = self._entries.get(key) or CacheEntry(key=key)
        if current.data is not None and current.tags:
            tags = current.tags
        else:
            tags = self._index.index(key, self._resolve_tags(query, None))
        stale = key in self._refetch_after_settle or current.stale
        self._commit(
            replace(
                current,
                status=Status.ERROR,
                error=exc,
                tags=tags,
                stale=stale,
            )
        )
        self._after_settle(key, key in self._refetch_after_settle)

    def _after_settle(self, key: CacheKey, refetch: bool) -> None:
        entry = self._entries[key]
        if entry.subscriber_count == 0:
            self._schedule_eviction(key, settling=True)
        elif refetch:
            self._spawn(self._background_fetch(key, wait_pending=True))

    def _resolve_tags(self, query: _Query, data: Any) -> list[Tag]:
        provided = query.tags(data) if callable(query.tags) else query.tags
        return [Tag(tuple(t)) for t in provided]

    def _commit(self, entry: CacheEntry[Any]) -> None:
        """Store a new snapshot and notify the key's subscribers."""
        self._entries[entry.key] = entry
        for callback in list(self._subscribers.get(entry.key, {}).values()):
            try:
                callback(entry)
            except Exception:
                logger.warning(
                    "Subscriber for %s raised", entry.key, exc_info=True
                )

    async def _background_fetch(
        self, key: CacheKey, *, wait_pending: bool = False
    ) -> None:
        if wait_pending:
            await self._deduplicator.wait(key)
        query = self._queries.get(key)
        if query is None or key not in self._entries:
            return
        await self._quiet(
            key,
            self._deduplicator.run_exclusive(key, lambda: self._fetch(key, query)),
        )

    async def _quiet(self, key: CacheKey, fetch: Coroutine[Any, Any, Any]) -> None:
        """Await a fetch whose outcome is already stored on the entry."""
        try:
            await fetch
        except AdminCacheError as exc:
            logger.warning("Background fetch of %s failed: %s", key, exc)
        except Exception:
            logger.exception("Background fetch of %s failed", key)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def _schedule_eviction(self, key: CacheKey, *, settling: bool = False) -> None:
        self._cancel_eviction(key)
        if self._keep_unused_for <= 0:
            self._evict(key, settling=settling)
            return
        loop = asyncio.get_running_loop()
        self._evictions[key] = loop.call_later(
            self._keep_unused_for, self._evict, key
        )

    def _cancel_eviction(self, key: CacheKey) -> None:
        handle = self._evictions.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _evict(self, key: CacheKey, *, settling: bool = False) -> None:
        self._evictions.pop(key, None)
        entry = self._entries.get(key)
        if entry is None or entry.subscriber_count > 0:
            return
        # A settling fetch is still registered as pending until it returns
        if not settling and self._deduplicator.is_pending(key):
            return  # rescheduled when the fetch settles
        del self._entries[key]
        self._queries.pop(key, None)
        self._refetch_after_settle.discard(key)
        self._index.remove(key)
        logger.debug("Evicted %s", key)


__all__ = ["CacheStore", "Subscriber"]
