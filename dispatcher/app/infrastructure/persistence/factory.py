"""Repository factory: selects and assembles persistence adapters."""
from __future__ import annotations

from dispatcher.app.config.settings import Settings
from dispatcher.app.infrastructure.persistence.inmemory.in_memory_repository import InMemoryRepository
from dispatcher.app.infrastructure.persistence.mongo.connection import create_mongo_client
from dispatcher.app.infrastructure.persistence.mongo.mongo_repository import MongoRepository
from dispatcher.app.ports.message_repository import MessageRepository


async def create_message_repository(settings: Settings) -> MessageRepository:
    """Select repository adapter from configuration, bootstrap its indexes and return port type."""
    backend = settings.repository_backend.strip().lower()

    if backend == "mongo":
        mongo_client = await create_mongo_client(settings)
        repo = MongoRepository(
            mongo_client[settings.database_name][settings.database_collection],
            client=mongo_client,
        )
        try:
            await repo.ensure_indexes()
        except Exception:
            await repo.close()
            raise
        return repo

    if backend == "inmemory":
        repo = InMemoryRepository()
        await repo.ensure_indexes()
        return repo

    raise ValueError(f"Unsupported repository backend: {backend}")
