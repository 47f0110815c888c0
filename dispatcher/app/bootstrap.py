"""One-shot storage bootstrap: create the messages collection and its indexes.

    python -m dispatcher.app.bootstrap

Optionally tops up pending messages when SEED_MESSAGE_COUNT is set.
"""
import asyncio
from typing import Any

from loguru import logger

from dispatcher.app.application.seeding import seed_messages
from dispatcher.app.config.settings import Settings
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.core.logging import configure_logging
from dispatcher.app.infrastructure.persistence.factory import create_message_repository


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def run_bootstrap(settings: Settings) -> dict[str, Any]:
    """Ensure collection and indexes exist; return the backend's index information."""
    repository = await create_message_repository(settings)
    try:
        index_info = await repository.index_information()
        for name, spec in index_info.items():
            _log("index_present", name=name, key=spec.get("key"), sparse=spec.get("sparse", False))
        if settings.seed_message_count > 0:
            await seed_messages(
                repository,
                settings.seed_message_count,
                recipient=settings.seed_recipient,
            )
        _log("bootstrap_completed", database=settings.database_name, collection=settings.database_collection)
        return index_info
    finally:
        await repository.close()


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level, serialize=settings.log_serialize)
    try:
        asyncio.run(run_bootstrap(settings))
    except Exception as e:
        logger.exception("bootstrap failed: {}", e)
        raise


if __name__ == "__main__":
    main()
