"""Top up the store with generated pending messages for local runs."""
from __future__ import annotations

from typing import Any

from loguru import logger

from dispatcher.app.constants import MESSAGE_STATUS
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.domain.models import NewMessage
from dispatcher.app.ports.message_repository import MessageRepository


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def seed_messages(repository: MessageRepository, target: int, *, recipient: str) -> int:
    """Insert generated messages until `target` are pending. Returns how many were inserted."""
    if target <= 0:
        return 0
    pending = await repository.count_by_status([MESSAGE_STATUS.PENDING])
    if pending >= target:
        _log("seed_skipped", pending=pending, target=target)
        return 0

    missing = target - pending
    messages = [
        NewMessage(recipient=recipient, content=f"Auto generated message {i}")
        for i in range(missing)
    ]
    inserted = await repository.insert_many(messages)
    _log("messages_seeded", inserted=len(inserted), target=target)
    return len(inserted)
