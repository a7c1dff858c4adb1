"""Shared pytest fixtures."""

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

import pytest

from admincache import CacheStore, QueryClient, RequestDescriptor, Settings


class FakeTransport:
    """In-process transport: routes (method, path) to canned payloads.

    A handler is a payload, an exception instance, or a callable taking the
    request and returning either (sync or async).
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[RequestDescriptor] = []
        self.closed = False

    def route(self, method: str, path: str, handler: Any) -> None:
        self.routes[(method, path)] = handler

    def count(self, method: str, path: str) -> int:
        return sum(1 for c in self.calls if c.method == method and c.path == path)

    async def send(self, request: RequestDescriptor) -> Any:
        self.calls.append(request)
        await asyncio.sleep(0)
        handler = self.routes[(request.method, request.path)]
        result = handler(request) if callable(handler) else handler
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def aclose(self) -> None:
        self.closed = True


def counting(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap an async fetch function, counting its calls in ``.calls``."""

    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        wrapper.calls += 1  # type: ignore[attr-defined]
        return await fn(*args, **kwargs)

    wrapper.calls = 0  # type: ignore[attr-defined]
    return wrapper


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_url="http://api.test",
        api_timeout=5.0,
        api_token=None,
        keep_unused_for="60s",
        page_size=10,
        conflict_policy="queue",
    )


@pytest.fixture
def store() -> CacheStore:
    """Create a fresh CacheStore for each test."""
    return CacheStore()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(settings: Settings, transport: FakeTransport) -> QueryClient:
    return QueryClient(settings=settings, transport=transport)
