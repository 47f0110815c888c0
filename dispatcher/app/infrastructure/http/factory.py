"""HTTP client factory: builds AbstractHttpClient from settings."""
from __future__ import annotations

import httpx

from dispatcher.app.config.settings import Settings
from dispatcher.app.infrastructure.http.httpx_client import HttpxHttpClient
from dispatcher.app.ports.http_client import AbstractHttpClient


def create_http_client(settings: Settings) -> AbstractHttpClient:
    """Client defaults come from the sender timeouts; requests may still override them."""
    timeout = httpx.Timeout(
        connect=settings.sender_connect_timeout_seconds,
        read=settings.sender_read_timeout_seconds,
        write=settings.sender_read_timeout_seconds,
        pool=settings.sender_connect_timeout_seconds,
    )
    return HttpxHttpClient(httpx.AsyncClient(timeout=timeout))
