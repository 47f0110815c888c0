"""Domain models."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from dispatcher.app.constants import MESSAGE_STATUS


class MalformedMessageError(Exception):
    """Raised when a stored message can never be delivered as-is."""


def is_attempt_count(raw: Any) -> bool:
    """True when a stored attempt_count is a finite number that $inc can build on."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return False
    return not (isinstance(raw, float) and not math.isfinite(raw))


def parse_attempt_count(raw: Any) -> int:
    """Missing, null or non-numeric values count as no attempts."""
    return int(raw) if is_attempt_count(raw) else 0


@dataclass(frozen=True)
class Claim:
    """In-flight lease on a message held by one worker."""

    token: str
    worker_id: str
    claimed_at: datetime

    @staticmethod
    def from_dict(raw: Mapping[str, Any] | None) -> "Claim | None":
        if not raw:
            return None
        return Claim(
            token=str(raw.get("token", "")),
            worker_id=str(raw.get("worker_id", "")),
            claimed_at=raw.get("claimed_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "worker_id": self.worker_id,
            "claimed_at": self.claimed_at,
        }


@dataclass(frozen=True)
class Message:
    """A stored outbound message.

    recipient and content are kept exactly as found in storage (None when
    absent or not a string) so that validation, not parsing, decides whether
    the message is deliverable.
    """

    id: str
    recipient: str | None
    content: str | None
    status: str
    created_at: datetime | None
    attempt_count: int = 0
    sent_at: datetime | None = None
    last_error: str | None = None
    provider_message_id: str | None = None
    permanent_failure: bool = False
    claim: Claim | None = None

    @staticmethod
    def from_document(doc: Mapping[str, Any]) -> "Message":
        recipient = doc.get("recipient")
        content = doc.get("content")
        return Message(
            id=str(doc.get("_id", "")),
            recipient=recipient if isinstance(recipient, str) else None,
            content=content if isinstance(content, str) else None,
            status=str(doc.get("status", MESSAGE_STATUS.PENDING)),
            created_at=doc.get("created_at"),
            attempt_count=parse_attempt_count(doc.get("attempt_count")),
            sent_at=doc.get("sent_at"),
            last_error=doc.get("last_error"),
            provider_message_id=doc.get("provider_message_id"),
            permanent_failure=bool(doc.get("permanent_failure", False)),
            claim=Claim.from_dict(doc.get("claim")),
        )


@dataclass(frozen=True)
class NewMessage:
    """Message as handed over by a producer, before it is stored."""

    recipient: str | None
    content: str


def new_message_document(message: NewMessage, created_at: datetime) -> dict[str, Any]:
    """Initial stored shape of a message. Optional recipient is omitted, not nulled, to keep the index sparse."""
    doc: dict[str, Any] = {
        "content": message.content,
        "status": MESSAGE_STATUS.PENDING,
        "created_at": created_at,
        "updated_at": created_at,
        "attempt_count": 0,
        "sent_at": None,
        "last_error": None,
        "provider_message_id": None,
        "permanent_failure": False,
        "claim": None,
    }
    if message.recipient is not None:
        doc["recipient"] = message.recipient
    return doc


@dataclass(frozen=True)
class SendReceipt:
    """What the sender capability reports back for an accepted message."""

    message_id: str
    detail: str = ""


def validate_message(message: Message, max_content_length: int) -> None:
    """Raise MalformedMessageError when the message cannot be delivered."""
    if not message.recipient or not message.recipient.strip():
        raise MalformedMessageError("message missing required field: recipient")
    if not message.content or not message.content.strip():
        raise MalformedMessageError("message missing required field: content")
    if max_content_length > 0 and len(message.content) > max_content_length:
        raise MalformedMessageError(
            f"message content exceeds {max_content_length} characters ({len(message.content)})"
        )
