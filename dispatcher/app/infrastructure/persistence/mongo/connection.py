"""Mongo client connection helper (provider-specific infrastructure)."""
from __future__ import annotations

import inspect
from typing import Any

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient

from dispatcher.app.config.settings import Settings
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.core.backoff import retry_with_backoff


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def build_mongo_uri(settings: Settings) -> str:
    host = f"{settings.database_host}:{settings.database_port}"
    if settings.database_user and settings.database_password:
        return f"mongodb://{settings.database_user}:{settings.database_password}@{host}"
    return f"mongodb://{host}"


async def close_mongo_client(client: Any) -> None:
    res = client.close()
    if inspect.isawaitable(res):
        await res


async def _ping_new_client(settings: Settings) -> AsyncIOMotorClient:
    # tz_aware so created_at/claimed_at come back comparable with UTC datetimes.
    client = AsyncIOMotorClient(
        build_mongo_uri(settings),
        serverSelectionTimeoutMS=settings.database_connection_timeout_ms,
        tz_aware=True,
    )
    try:
        await client.admin.command("ping")
    except Exception:
        await close_mongo_client(client)
        raise
    return client


async def create_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    """Connect with backoff; raises the last error after max_connection_attempts."""
    _log("mongo_connecting", host=settings.database_host, port=settings.database_port)
    client = await retry_with_backoff(
        lambda: _ping_new_client(settings),
        initial_delay=settings.initial_backoff_seconds,
        max_delay=settings.max_backoff_seconds,
        multiplier=settings.backoff_multiplier,
        max_attempts=settings.max_connection_attempts,
        operation="mongo connect",
    )
    _log("mongo_connected", database=settings.database_name)
    return client
