"""Error taxonomy for the query layer.

NetworkError, ServerError and ParseError describe a failed fetch and are
stored on the cache entry. ConflictError and ValidationError describe a bad
call and go straight back to the caller.
"""

from typing import Any


class AdminCacheError(Exception):
    """Base class for all admincache errors."""


class NetworkError(AdminCacheError):
    """The transport could not reach the server or timed out."""


class ServerError(AdminCacheError):
    """The server answered with a non-2xx status."""

    def __init__(
        self,
        status: int,
        message: str | None = None,
        *,
        code: str | None = None,
        body: Any = None,
    ) -> None:
        self.status = status
        self.code = code
        self.message = message or f"HTTP {status}"
        self.body = body
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"ServerError(status={self.status}, message={self.message!r})"


class ParseError(AdminCacheError):
    """A success payload did not match the expected result schema."""


class ConflictError(AdminCacheError):
    """A mutation for the same resource instance is already in progress."""


class ValidationError(AdminCacheError, ValueError):
    """Parameters failed basic shape checks before any request was made."""


__all__ = [
    "AdminCacheError",
    "ConflictError",
    "NetworkError",
    "ParseError",
    "ServerError",
    "ValidationError",
]
