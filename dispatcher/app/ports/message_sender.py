"""Sender capability port: delivers one message to an external gateway."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from dispatcher.app.domain.models import SendReceipt


class SenderError(Exception):
    """Delivery attempt did not succeed."""


class SenderUnavailableError(SenderError):
    """Gateway could not be reached or asked us to come back later. Not counted as an attempt."""


class SenderDeliveryError(SenderError):
    """Gateway was reached and the attempt failed. Counted against the retry limit."""


@runtime_checkable
class MessageSender(Protocol):
    async def send(self, recipient: str, content: str) -> SendReceipt:
        """Deliver; raise SenderUnavailableError or SenderDeliveryError on failure."""
        ...

    async def close(self) -> None: ...
