"""Pagination metadata normalization and clamped page navigation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from admincache.errors import ParseError, ValidationError
from admincache.types import PaginationDescriptor

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Servers name these per resource ("totalPosts", "usersPerPage", ...)
_TOTAL_ITEMS_FIELDS = (
    "totalItems",
    "total",
    "totalCount",
    "totalPosts",
    "totalUsers",
    "totalReports",
    "totalBlockedUsers",
    "totalPackages",
)
_PER_PAGE_FIELDS = (
    "itemsPerPage",
    "limit",
    "perPage",
    "pageSize",
    "postsPerPage",
    "usersPerPage",
    "reportsPerPage",
)


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a paginated list."""

    items: list[T]
    pagination: PaginationDescriptor

    def __len__(self) -> int:
        return len(self.items)


def validate_page_params(page: Any, limit: Any) -> tuple[int, int]:
    """Check caller-supplied page/limit before any request is built."""
    for name, value in (("page", page), ("limit", limit)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be an integer, got {value!r}")
        if value < 1:
            raise ValidationError(f"{name} must be >= 1, got {value}")
    return page, limit


def _as_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ParseError(f"pagination field {field!r} is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    raise ParseError(f"pagination field {field!r} is not an integer: {value!r}")


def _first_int(meta: Mapping[str, Any], fields: tuple[str, ...]) -> int | None:
    for field in fields:
        if meta.get(field) is not None:
            return _as_int(meta[field], field)
    return None


def _check_flag(meta: Mapping[str, Any], field: str, expected: bool) -> bool:
    value = meta.get(field)
    if value is None:
        return expected
    if not isinstance(value, bool):
        raise ParseError(f"pagination field {field!r} is not a boolean: {value!r}")
    if value != expected:
        raise ParseError(
            f"pagination field {field!r} is {value} but page "
            f"{meta.get('currentPage')} of {meta.get('totalPages')} implies {expected}"
        )
    return value


def describe(
    raw: Any,
    *,
    items_key: str | None = None,
    requested_limit: int | None = None,
) -> PaginationDescriptor:
    """Build a PaginationDescriptor from a server response.

    Metadata is read from a nested ``pagination`` object, or from top-level
    ``currentPage``/``totalPages`` fields. Without either, the response is
    treated as a single page holding ``len(raw[items_key])`` items.

    Defaults:
        total items: the item count, only when there is at most one page
        items per page: ``requested_limit``, else the item count
        hasNextPage / hasPrevPage: derived from currentPage and totalPages
        totalPages of 0 with no items is reported as 1

    Raises:
        ParseError: metadata is malformed or self-inconsistent
    """
    if not isinstance(raw, Mapping):
        raise ParseError(f"expected an object, got {type(raw).__name__}")

    items = raw.get(items_key) if items_key else None
    item_count = len(items) if isinstance(items, list) else 0

    meta = raw.get("pagination")
    if meta is None and ("currentPage" in raw or "totalPages" in raw):
        meta = raw
    if meta is not None and not isinstance(meta, Mapping):
        raise ParseError(f"pagination is not an object: {meta!r}")

    if meta is None:
        return PaginationDescriptor(
            current_page=1,
            total_pages=1,
            total_items=item_count,
            items_per_page=requested_limit or item_count,
            has_next_page=False,
            has_prev_page=False,
        )

    if meta.get("currentPage") is None or meta.get("totalPages") is None:
        raise ParseError("pagination requires currentPage and totalPages")
    current_page = _as_int(meta["currentPage"], "currentPage")
    total_pages = _as_int(meta["totalPages"], "totalPages")

    total_items = _first_int(meta, _TOTAL_ITEMS_FIELDS)
    if total_items is None:
        if total_pages > 1:
            raise ParseError("pagination with several pages lacks a total item count")
        total_items = item_count

    items_per_page = _first_int(meta, _PER_PAGE_FIELDS)
    if items_per_page is None:
        items_per_page = requested_limit or item_count

    if total_items == 0 and total_pages == 0:
        total_pages = 1
    if total_items > 0 and not 1 <= current_page <= total_pages:
        raise ParseError(
            f"currentPage {current_page} outside [1, {total_pages}]"
        )

    return PaginationDescriptor(
        current_page=current_page,
        total_pages=total_pages,
        total_items=total_items,
        items_per_page=items_per_page,
        has_next_page=_check_flag(meta, "hasNextPage", current_page < total_pages),
        has_prev_page=_check_flag(meta, "hasPrevPage", current_page > 1),
    )


class Paginator(Generic[T]):
    """Page cursor over a paginated query.

    Navigation outside ``[1, total_pages]`` is a no-op that returns the
    current descriptor without loading anything.

    Usage:
        pages = client.paginator("admin_reports", limit=10)
        await pages.load()
        await pages.next_page()
    """

    def __init__(
        self,
        load_page: Callable[[int], Awaitable[Page[T]]],
        *,
        page: int = 1,
    ) -> None:
        validate_page_params(page, 1)
        self._load_page = load_page
        self._page_number = page
        self._page: Page[T] | None = None

    @property
    def page(self) -> Page[T] | None:
        return self._page

    @property
    def descriptor(self) -> PaginationDescriptor | None:
        return self._page.pagination if self._page is not None else None

    @property
    def items(self) -> list[T]:
        return self._page.items if self._page is not None else []

    async def load(self, page: int | None = None) -> PaginationDescriptor:
        """Load ``page`` (default: the current page), reading from cache when fresh.

        The cursor moves only once the page has loaded; a failed load
        leaves it where it was.
        """
        number = self._page_number if page is None else page
        loaded = await self._load_page(number)
        self._page = loaded
        self._page_number = loaded.pagination.current_page
        return loaded.pagination

    async def go_to(self, page: int) -> PaginationDescriptor:
        if self._page is None:
            return await self.load(validate_page_params(page, 1)[0])

        current = self._page.pagination
        if isinstance(page, bool) or not isinstance(page, int):
            raise ValidationError(f"page must be an integer, got {page!r}")
        if not 1 <= page <= current.total_pages:
            logger.debug(
                "Ignoring navigation to page %s of %s", page, current.total_pages
            )
            return current
        return await self.load(page)

    async def next_page(self) -> PaginationDescriptor:
        return await self.go_to(self._page_number + 1)

    async def prev_page(self) -> PaginationDescriptor:
        return await self.go_to(self._page_number - 1)
