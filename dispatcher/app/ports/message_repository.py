"""Abstract interface for message persistence (port)."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, Sequence

from dispatcher.app.domain.models import Message, NewMessage


class MessageRepository(Protocol):
    """Port: message store. Implementations live in infrastructure.

    Every status-changing call is conditional: mark_* only touch a message that
    is still PENDING and still carries the caller's claim token, so a SENT
    message is never rewritten.
    """

    async def ensure_indexes(self) -> None: ...

    async def index_information(self) -> dict[str, Any]:
        """Index name -> index description. Backends without indexes return an empty dict."""
        ...

    async def find_by_status_ordered(
        self, statuses: Sequence[str], *, limit: int = 0
    ) -> list[Message]:
        """Messages in any of `statuses`, oldest created_at first."""
        ...

    async def find_by_status(self, status: str, *, limit: int = 0) -> list[Message]: ...

    async def find_by_recipient(self, recipient: str, *, limit: int = 0) -> list[Message]: ...

    async def find_dispatchable(
        self, *, max_retries: int, stale_before: datetime, limit: int = 0
    ) -> list[Message]:
        """Unclaimed (or stale-claimed) PENDING/FAILED messages still within the retry limit, oldest first."""
        ...

    async def claim(
        self,
        message_id: str,
        *,
        token: str,
        worker_id: str,
        now: datetime,
        stale_before: datetime,
        max_retries: int,
    ) -> Message | None:
        """Atomically claim a message (FAILED becomes PENDING). None when someone else got it."""
        ...

    async def release(self, message_id: str, token: str, *, error: str | None = None) -> bool: ...

    async def mark_sent(
        self,
        message_id: str,
        token: str,
        *,
        sent_at: datetime,
        provider_message_id: str,
    ) -> bool: ...

    async def mark_failed(
        self,
        message_id: str,
        token: str,
        *,
        error: str,
        permanent: bool = False,
    ) -> Message | None:
        """PENDING -> FAILED. attempt_count is incremented unless the failure is permanent."""
        ...

    async def get_by_id(self, message_id: str) -> Message | None: ...

    async def count_by_status(self, statuses: Sequence[str]) -> int: ...

    async def insert_many(self, messages: Sequence[NewMessage]) -> list[str]: ...

    async def close(self) -> None:
        """Release resources (e.g. DB client). No-op allowed if nothing to close."""
        ...
