"""admincache - Tag-invalidated query cache for the moderation admin API."""

# Client API
from admincache.client import QueryClient, QuerySubscription
from admincache.config import Settings, get_settings

# Building blocks
from admincache.dedup import RequestDeduplicator
from admincache.duration import parse_duration
from admincache.endpoints import Operation
from admincache.errors import (
    AdminCacheError,
    ConflictError,
    NetworkError,
    ParseError,
    ServerError,
    ValidationError,
)
from admincache.keys import make_cache_key
from admincache.mutations import ConflictPolicy, MutationDispatcher
from admincache.pagination import Page, Paginator, describe
from admincache.store import CacheStore
from admincache.tag_index import TagIndex
from admincache.tags import LIST, list_tag, tag
from admincache.transport import HttpTransport, Transport

# Core types
from admincache.types import (
    CacheEntry,
    CacheKey,
    Duration,
    MutationResult,
    PaginationDescriptor,
    RequestDescriptor,
    Status,
    Tag,
)

__version__ = "0.1.0"

__all__ = [
    "LIST",
    "AdminCacheError",
    "CacheEntry",
    "CacheKey",
    "CacheStore",
    "ConflictError",
    "ConflictPolicy",
    "Duration",
    "HttpTransport",
    "MutationDispatcher",
    "MutationResult",
    "NetworkError",
    "Operation",
    "Page",
    "PaginationDescriptor",
    "Paginator",
    "ParseError",
    "QueryClient",
    "QuerySubscription",
    "RequestDeduplicator",
    "RequestDescriptor",
    "ServerError",
    "Settings",
    "Status",
    "Tag",
    "TagIndex",
    "Transport",
    "ValidationError",
    "describe",
    "get_settings",
    "list_tag",
    "make_cache_key",
    "parse_duration",
    "tag",
]
