"""In-memory sender for local mode and tests. Records deliveries instead of sending them."""
from __future__ import annotations

import uuid

from dispatcher.app.domain.models import SendReceipt


class InMemorySender:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.calls = 0
        self.fail_with = fail_with

    async def send(self, recipient: str, content: str) -> SendReceipt:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((recipient, content))
        return SendReceipt(message_id=uuid.uuid4().hex, detail="accepted")

    async def close(self) -> None:
        return
