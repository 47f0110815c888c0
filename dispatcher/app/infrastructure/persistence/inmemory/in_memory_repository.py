"""In-memory MessageRepository for local mode and tests.

Same conditional-update semantics as the Mongo adapter. Every method runs
without awaiting in between reads and writes, so on a single event loop each
call is atomic. All data is lost on process restart.
"""
from __future__ import annotations

import copy
import itertools
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from dispatcher.app.constants import MESSAGE_STATUS
from dispatcher.app.domain.models import (
    Claim,
    Message,
    NewMessage,
    is_attempt_count,
    new_message_document,
    parse_attempt_count,
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _over_retry_limit(raw: Any, max_retries: int) -> bool:
    # Same as Mongo {"$gt": max_retries}: only numbers compare, so a missing, null
    # or non-numeric attempt_count never exceeds the limit.
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return False
    return raw > max_retries


class InMemoryRepository:
    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()
        self.indexes_ensured = False

    async def ensure_indexes(self) -> None:
        self.indexes_ensured = True

    async def index_information(self) -> dict[str, Any]:
        return {}

    def insert_document(self, doc: dict[str, Any]) -> str:
        """Store a raw document as-is (producers may write incomplete ones)."""
        stored = copy.deepcopy(doc)
        message_id = str(stored.setdefault("_id", uuid.uuid4().hex))
        self._docs[message_id] = stored
        self._order[message_id] = next(self._seq)
        return message_id

    def document(self, message_id: str) -> dict[str, Any] | None:
        doc = self._docs.get(message_id)
        return copy.deepcopy(doc) if doc is not None else None

    def _sort_key(self, message_id: str) -> tuple[bool, datetime, int]:
        created_at = self._docs[message_id].get("created_at")
        return (created_at is not None, created_at or _EPOCH, self._order[message_id])

    def _select(
        self,
        predicate: Callable[[dict[str, Any]], bool],
        *,
        limit: int,
        ordered: bool,
    ) -> list[Message]:
        ids = [message_id for message_id, doc in self._docs.items() if predicate(doc)]
        if ordered:
            ids.sort(key=self._sort_key)
        if limit > 0:
            ids = ids[:limit]
        return [Message.from_document(self._docs[message_id]) for message_id in ids]

    @staticmethod
    def _dispatchable(doc: dict[str, Any], max_retries: int, stale_before: datetime) -> bool:
        status = doc.get("status")
        if status not in MESSAGE_STATUS.UNSENT or doc.get("permanent_failure") is True:
            return False
        if status == MESSAGE_STATUS.FAILED and _over_retry_limit(doc.get("attempt_count"), max_retries):
            return False
        claim = doc.get("claim")
        return not claim or claim["claimed_at"] < stale_before

    def _holds_claim(self, message_id: str, token: str) -> dict[str, Any] | None:
        doc = self._docs.get(message_id)
        if doc is None or not doc.get("claim") or doc["claim"].get("token") != token:
            return None
        return doc

    async def find_by_status_ordered(
        self, statuses: Sequence[str], *, limit: int = 0
    ) -> list[Message]:
        wanted = set(statuses)
        return self._select(lambda doc: doc.get("status") in wanted, limit=limit, ordered=True)

    async def find_by_status(self, status: str, *, limit: int = 0) -> list[Message]:
        return self._select(lambda doc: doc.get("status") == status, limit=limit, ordered=False)

    async def find_by_recipient(self, recipient: str, *, limit: int = 0) -> list[Message]:
        return self._select(
            lambda doc: "recipient" in doc and doc["recipient"] == recipient,
            limit=limit,
            ordered=False,
        )

    async def find_dispatchable(
        self, *, max_retries: int, stale_before: datetime, limit: int = 0
    ) -> list[Message]:
        return self._select(
            lambda doc: self._dispatchable(doc, max_retries, stale_before),
            limit=limit,
            ordered=True,
        )

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
        doc = self._docs.get(message_id)
        if doc is None or not self._dispatchable(doc, max_retries, stale_before):
            return None
        doc["status"] = MESSAGE_STATUS.PENDING
        doc["claim"] = Claim(token=token, worker_id=worker_id, claimed_at=now).to_dict()
        doc["updated_at"] = now
        if not is_attempt_count(doc.get("attempt_count")):
            doc["attempt_count"] = parse_attempt_count(doc.get("attempt_count"))
        return Message.from_document(doc)

    async def release(self, message_id: str, token: str, *, error: str | None = None) -> bool:
        doc = self._holds_claim(message_id, token)
        if doc is None:
            return False
        doc["claim"] = None
        doc["updated_at"] = datetime.now(timezone.utc)
        if error is not None:
            doc["last_error"] = error
        return True

    async def mark_sent(
        self,
        message_id: str,
        token: str,
        *,
        sent_at: datetime,
        provider_message_id: str,
    ) -> bool:
        doc = self._holds_claim(message_id, token)
        if doc is None or doc.get("status") != MESSAGE_STATUS.PENDING:
            return False
        doc.update(
            status=MESSAGE_STATUS.SENT,
            sent_at=sent_at,
            provider_message_id=provider_message_id,
            last_error=None,
            claim=None,
            updated_at=sent_at,
        )
        return True

    async def mark_failed(
        self,
        message_id: str,
        token: str,
        *,
        error: str,
        permanent: bool = False,
    ) -> Message | None:
        doc = self._holds_claim(message_id, token)
        if doc is None or doc.get("status") != MESSAGE_STATUS.PENDING:
            return None
        doc.update(
            status=MESSAGE_STATUS.FAILED,
            last_error=error,
            permanent_failure=permanent,
            claim=None,
            updated_at=datetime.now(timezone.utc),
        )
        if not permanent:
            doc["attempt_count"] = parse_attempt_count(doc.get("attempt_count")) + 1
        return Message.from_document(doc)

    async def get_by_id(self, message_id: str) -> Message | None:
        doc = self._docs.get(message_id)
        return Message.from_document(doc) if doc is not None else None

    async def count_by_status(self, statuses: Sequence[str]) -> int:
        wanted = set(statuses)
        return sum(1 for doc in self._docs.values() if doc.get("status") in wanted)

    async def insert_many(self, messages: Sequence[NewMessage]) -> list[str]:
        now = datetime.now(timezone.utc)
        return [self.insert_document(new_message_document(message, now)) for message in messages]

    async def close(self) -> None:
        return
