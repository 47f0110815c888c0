"""HTTP client port: contract for posting JSON to a remote endpoint.

Domain code depends on this port; infrastructure (httpx) implements it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, runtime_checkable


class HttpClientError(Exception):
    """Base for HTTP client failures."""


class HttpClientTimeoutError(HttpClientError):
    """Raised when the request times out."""


class HttpClientConnectionError(HttpClientError):
    """Raised when the remote end cannot be reached."""


@runtime_checkable
class HttpResponse(Protocol):
    """Minimal read-only view of an HTTP response."""

    @property
    def status_code(self) -> int: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    @property
    def text(self) -> str: ...

    def json(self) -> Any: ...


@dataclass(frozen=True)
class RequestTimeout:
    """Connect and read timeouts in seconds."""

    connect_seconds: float
    read_seconds: float


@runtime_checkable
class AbstractHttpClient(Protocol):
    """Port: perform POST requests. Implementations live in infrastructure."""

    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """POST `payload` as JSON. Non-2xx responses are returned, not raised."""
        ...

    async def close(self) -> None:
        """Release resources (e.g. connection pool). No-op allowed if nothing to close."""
        ...
