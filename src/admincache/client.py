"""QueryClient - the view layer's entry point.

Provides:
- query(): cached, de-duplicated reads with typed results
- subscribe(): live QuerySubscription (status, data, error, refetch())
- paginator(): clamped page navigation over a paginated query
- mutate(): pessimistic writes with tag invalidation
- invalidate(): manual tag invalidation
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any

from admincache.config import Settings, get_settings
from admincache.endpoints import (
    Operation,
    normalize_query_params,
    provided_tags,
    query_endpoint,
    resolve_query,
)
from admincache.keys import make_cache_key
from admincache.mutations import ConflictPolicy, MutationDispatcher
from admincache.pagination import Page, Paginator, validate_page_params
from admincache.store import CacheStore, Subscriber
from admincache.tags import tag
from admincache.transport import HttpTransport, Transport
from admincache.types import (
    CacheEntry,
    CacheKey,
    FetchFn,
    PaginationDescriptor,
    Status,
    Tag,
    TagsProvider,
)

logger = logging.getLogger(__name__)


class QuerySubscription:
    """A live view of one query's cache entry.

    Stays registered until unsubscribe(); the entry is kept while any
    subscription to it is alive.
    """

    __slots__ = ("_fetch_fn", "_key", "_store", "_tags", "_unsubscribe", "endpoint")

    def __init__(
        self,
        store: CacheStore,
        endpoint: str,
        key: CacheKey,
        tags: TagsProvider,
        fetch_fn: FetchFn,
        unsubscribe: Callable[[], None],
    ) -> None:
        self.endpoint = endpoint
        self._store = store
        self._key = key
        self._tags = tags
        self._fetch_fn = fetch_fn
        self._unsubscribe = unsubscribe

    @property
    def key(self) -> CacheKey:
        return self._key

    @property
    def entry(self) -> CacheEntry[Any]:
        return self._store.get(self._key) or CacheEntry(key=self._key)

    @property
    def status(self) -> Status:
        return self.entry.status

    @property
    def data(self) -> Any:
        return self.entry.data

    @property
    def error(self) -> BaseException | None:
        return self.entry.error

    @property
    def is_loading(self) -> bool:
        """Loading with nothing to show yet."""
        entry = self.entry
        return entry.status is Status.LOADING and entry.data is None

    @property
    def is_refreshing(self) -> bool:
        """Loading while previous data is still shown."""
        entry = self.entry
        return entry.status is Status.LOADING and entry.data is not None

    @property
    def pagination(self) -> PaginationDescriptor | None:
        data = self.entry.data
        return data.pagination if isinstance(data, Page) else None

    async def refetch(self) -> Any:
        return await self._store.refetch(self._key, self._tags, self._fetch_fn)

    def unsubscribe(self) -> None:
        self._unsubscribe()

    def __repr__(self) -> str:
        return f"QuerySubscription({self._key}, {self.status.value})"


class QueryClient:
    """Cache-backed client for the admin API.

    Usage:
        async with QueryClient() as client:
            page = await client.query("admin_reports", page=1)
            await client.mutate("delete_post", post_id="p1")
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: Transport | None = None,
        store: CacheStore | None = None,
        policy: ConflictPolicy | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport or HttpTransport(
            self._settings.api_url,
            token=self._settings.api_token,
            timeout=self._settings.api_timeout,
        )
        self._store = store if store is not None else CacheStore(
            keep_unused_for=self._settings.keep_unused_for
        )
        self._dispatcher = MutationDispatcher(
            self._store,
            self._transport,
            policy=policy or ConflictPolicy(self._settings.conflict_policy),
        )

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def dispatcher(self) -> MutationDispatcher:
        return self._dispatcher

    def cache_key(self, endpoint: str, **params: Any) -> CacheKey:
        """The key a query with these parameters is cached under."""
        return make_cache_key(endpoint, self._normalize(endpoint, params))

    async def query(self, endpoint: str, **params: Any) -> Any:
        """Typed result of a query, from cache when fresh."""
        key, tags, fetch = self._prepare(endpoint, params)
        return await self._store.request(key, tags, fetch)

    def subscribe(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        callback: Subscriber | None = None,
    ) -> QuerySubscription:
        """Subscribe to a query and start fetching it unless it is fresh."""
        key, tags, fetch = self._prepare(endpoint, params or {})
        unsubscribe = self._store.subscribe(key, callback or (lambda entry: None))
        logger.debug("Subscribed to %s", key)
        self._store.prefetch(key, tags, fetch)
        return QuerySubscription(self._store, endpoint, key, tags, fetch, unsubscribe)

    def paginator(
        self,
        endpoint: str,
        *,
        page: int = 1,
        limit: int | None = None,
        **params: Any,
    ) -> Paginator[Any]:
        if not query_endpoint(endpoint).paginated:
            raise ValueError(f"{endpoint} is not a paginated query")
        page, page_size = validate_page_params(
            page, limit if limit is not None else self._settings.page_size
        )

        async def load_page(number: int) -> Page[Any]:
            return await self.query(endpoint, page=number, limit=page_size, **params)

        return Paginator(load_page, page=page)

    async def mutate(self, kind: str, **params: Any) -> Any:
        """Run a write; affected queries refetch once it succeeds."""
        outcome = await self._dispatcher.mutate(Operation(kind, params))
        return outcome.result

    def invalidate(self, *tags: Tag | str) -> set[CacheKey]:
        """Invalidate by tag tuples, or bare category names."""
        return self._store.invalidate(
            tag(t) if isinstance(t, str) else t for t in tags
        )

    async def aclose(self) -> None:
        self._store.clear()
        await self._transport.aclose()

    async def __aenter__(self) -> QueryClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _normalize(self, endpoint: str, params: Mapping[str, Any]) -> dict[str, Any]:
        return normalize_query_params(
            endpoint, params, page_size=self._settings.page_size
        )

    def _prepare(
        self, endpoint: str, params: Mapping[str, Any]
    ) -> tuple[CacheKey, TagsProvider, FetchFn]:
        normalized = self._normalize(endpoint, params)
        definition = query_endpoint(endpoint)
        request = resolve_query(endpoint, normalized)
        transport = self._transport

        async def fetch() -> Any:
            raw = await transport.send(request)
            return definition.parse(raw, normalized)

        return (
            make_cache_key(endpoint, normalized),
            provided_tags(endpoint, normalized),
            fetch,
        )


__all__ = ["QueryClient", "QuerySubscription"]
