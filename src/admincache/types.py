"""Core types for the admincache query layer."""

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    NewType,
    TypeVar,
)

T = TypeVar("T")

# Branded tag type - compile-time enforcement only
if TYPE_CHECKING:
    Tag = NewType("Tag", tuple[str, ...])
else:
    Tag = tuple

CacheKey = str

# Static tags, or a function of the fetched data (None after a failed fetch)
TagsProvider = Iterable[Tag] | Callable[[Any], Iterable[Tag]]
FetchFn = Callable[[], Awaitable[Any]]


class Status(Enum):
    """Fetch lifecycle of a cache entry."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """Snapshot of a cached query. Replaced as a whole on every change."""

    key: CacheKey
    status: Status = Status.IDLE
    data: T | None = None
    error: BaseException | None = None
    fetched_at: int | None = None  # Unix timestamp ms
    tags: frozenset[Tag] = frozenset()
    subscriber_count: int = 0
    stale: bool = False

    @property
    def is_fresh(self) -> bool:
        return self.status is Status.SUCCESS and not self.stale


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """Transport-agnostic description of one API call."""

    method: str
    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True, slots=True)
class PaginationDescriptor:
    """Normalized pagination state reported by the server."""

    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool


@dataclass(frozen=True, slots=True)
class MutationResult(Generic[T]):
    """Result of a mutation with the tags it invalidated."""

    result: T
    invalidated: list[Tag]


# Duration type alias
Duration = str | int  # "30s", "5m", "2h", "1d" or milliseconds
