from __future__ import annotations

import pytest

from dispatcher.app.infrastructure.persistence.inmemory.in_memory_repository import InMemoryRepository
from dispatcher.app.infrastructure.sender.inmemory.in_memory_sender import InMemorySender


@pytest.fixture()
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def sender() -> InMemorySender:
    return InMemorySender()
