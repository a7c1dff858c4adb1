"""HTTP transport for the admin REST API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx

from admincache.errors import NetworkError, ParseError, ServerError
from admincache.types import RequestDescriptor

logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Anything that can execute a RequestDescriptor."""

    async def send(self, request: RequestDescriptor) -> Any:
        """Return the decoded success payload, or raise an AdminCacheError."""
        ...

    async def aclose(self) -> None:
        """Release connections."""
        ...


def _error_fields(body: Any) -> tuple[str | None, str | None]:
    """(message, code) from a structured error body, when there is one."""
    if not isinstance(body, Mapping):
        return None, None
    message = body.get("error") or body.get("message")
    if isinstance(message, Mapping):
        code = message.get("code")
        message = message.get("message")
    else:
        code = body.get("code")
    return (
        str(message) if message is not None else None,
        str(code) if code is not None else None,
    )


class HttpTransport:
    """Async transport over httpx.

    Timeouts and connection failures become NetworkError, non-2xx responses
    ServerError, and undecodable success bodies ParseError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
        )

    async def send(self, request: RequestDescriptor) -> Any:
        try:
            response = await self._client.request(
                request.method,
                request.path,
                params=dict(request.params) or None,
                json=request.body,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{request.method} {request.path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{request.method} {request.path} failed: {exc}") from exc

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            message, code = _error_fields(body)
            logger.debug(
                "%s %s -> %s", request.method, request.path, response.status_code
            )
            raise ServerError(response.status_code, message, code=code, body=body)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(
                f"{request.method} {request.path}: response is not JSON"
            ) from exc

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


__all__ = ["HttpTransport", "Transport"]
