"""MongoDB implementation of MessageRepository."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import CollectionInvalid

from dispatcher.app.constants import MESSAGE_STATUS
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.domain.models import (
    Claim,
    Message,
    NewMessage,
    is_attempt_count,
    new_message_document,
    parse_attempt_count,
)
from dispatcher.app.infrastructure.persistence.mongo.connection import close_mongo_client
from dispatcher.app.infrastructure.persistence.mongo.constants import MESSAGE_INDEXES


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _object_id(message_id: str) -> Any:
    """Ids we generate are ObjectIds; foreign producers may use plain strings."""
    if ObjectId.is_valid(message_id):
        return ObjectId(message_id)
    return message_id


def _dispatchable_filter(max_retries: int, stale_before: datetime) -> dict[str, Any]:
    return {
        "status": {"$in": list(MESSAGE_STATUS.UNSENT)},
        "permanent_failure": {"$ne": True},
        "$and": [
            {"$or": [{"status": MESSAGE_STATUS.PENDING}, {"attempt_count": {"$not": {"$gt": max_retries}}}]},
            {"$or": [{"claim": None}, {"claim.claimed_at": {"$lt": stale_before}}]},
        ],
    }


class MongoRepository:
    """Concrete implementation of MessageRepository using MongoDB."""

    def __init__(self, collection: AsyncIOMotorCollection, *, client: Any | None = None) -> None:
        self._collection = collection
        self._client = client

    async def ensure_collection(self) -> None:
        database = self._collection.database
        try:
            await database.create_collection(self._collection.name)
            _log("mongo_collection_created", collection=self._collection.name)
        except CollectionInvalid:
            pass

    async def ensure_indexes(self) -> None:
        """Infrastructure bootstrap: create the collection and its three indexes."""
        await self.ensure_collection()
        for keys, options in MESSAGE_INDEXES:
            await self._collection.create_index(keys, **options)
        _log("mongo_indexes_ensured", indexes=[options["name"] for _, options in MESSAGE_INDEXES])

    async def index_information(self) -> dict[str, Any]:
        return await self._collection.index_information()

    async def _find(self, query: dict[str, Any], *, limit: int, ordered: bool) -> list[Message]:
        cursor = self._collection.find(query)
        if ordered:
            cursor = cursor.sort([("created_at", ASCENDING)])
        if limit > 0:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=None)
        return [Message.from_document(doc) for doc in docs]

    async def find_by_status_ordered(
        self, statuses: Sequence[str], *, limit: int = 0
    ) -> list[Message]:
        return await self._find({"status": {"$in": list(statuses)}}, limit=limit, ordered=True)

    async def find_by_status(self, status: str, *, limit: int = 0) -> list[Message]:
        return await self._find({"status": status}, limit=limit, ordered=False)

    async def find_by_recipient(self, recipient: str, *, limit: int = 0) -> list[Message]:
        return await self._find({"recipient": recipient}, limit=limit, ordered=False)

    async def find_dispatchable(
        self, *, max_retries: int, stale_before: datetime, limit: int = 0
    ) -> list[Message]:
        return await self._find(
            _dispatchable_filter(max_retries, stale_before), limit=limit, ordered=True
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
        query = {"_id": _object_id(message_id), **_dispatchable_filter(max_retries, stale_before)}
        doc = await self._collection.find_one_and_update(
            query,
            {
                "$set": {
                    "status": MESSAGE_STATUS.PENDING,
                    "claim": Claim(token=token, worker_id=worker_id, claimed_at=now).to_dict(),
                    "updated_at": now,
                },
            },
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        if not is_attempt_count(doc.get("attempt_count")):
            # $inc in mark_failed needs a number; producers may omit or garble the field.
            doc["attempt_count"] = parse_attempt_count(doc.get("attempt_count"))
            await self._collection.update_one(
                {"_id": doc["_id"], "claim.token": token},
                {"$set": {"attempt_count": doc["attempt_count"]}},
            )
        return Message.from_document(doc)

    async def release(self, message_id: str, token: str, *, error: str | None = None) -> bool:
        update: dict[str, Any] = {"claim": None, "updated_at": datetime.now(timezone.utc)}
        if error is not None:
            update["last_error"] = error
        result = await self._collection.update_one(
            {"_id": _object_id(message_id), "claim.token": token},
            {"$set": update},
        )
        return result.modified_count == 1

    async def mark_sent(
        self,
        message_id: str,
        token: str,
        *,
        sent_at: datetime,
        provider_message_id: str,
    ) -> bool:
        result = await self._collection.update_one(
            {
                "_id": _object_id(message_id),
                "claim.token": token,
                "status": MESSAGE_STATUS.PENDING,
            },
            {
                "$set": {
                    "status": MESSAGE_STATUS.SENT,
                    "sent_at": sent_at,
                    "provider_message_id": provider_message_id,
                    "last_error": None,
                    "claim": None,
                    "updated_at": sent_at,
                },
            },
        )
        return result.modified_count == 1

    async def mark_failed(
        self,
        message_id: str,
        token: str,
        *,
        error: str,
        permanent: bool = False,
    ) -> Message | None:
        now = datetime.now(timezone.utc)
        update: dict[str, Any] = {
            "$set": {
                "status": MESSAGE_STATUS.FAILED,
                "last_error": error,
                "permanent_failure": permanent,
                "claim": None,
                "updated_at": now,
            },
        }
        if not permanent:
            update["$inc"] = {"attempt_count": 1}
        doc = await self._collection.find_one_and_update(
            {
                "_id": _object_id(message_id),
                "claim.token": token,
                "status": MESSAGE_STATUS.PENDING,
            },
            update,
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return Message.from_document(doc)

    async def get_by_id(self, message_id: str) -> Message | None:
        doc = await self._collection.find_one({"_id": _object_id(message_id)})
        if not doc:
            return None
        return Message.from_document(doc)

    async def count_by_status(self, statuses: Sequence[str]) -> int:
        return int(await self._collection.count_documents({"status": {"$in": list(statuses)}}))

    async def insert_many(self, messages: Sequence[NewMessage]) -> list[str]:
        if not messages:
            return []
        now = datetime.now(timezone.utc)
        result = await self._collection.insert_many(
            [new_message_document(message, now) for message in messages]
        )
        return [str(inserted_id) for inserted_id in result.inserted_ids]

    async def close(self) -> None:
        """Close underlying Mongo client when owned by this adapter."""
        if self._client is not None:
            await close_mongo_client(self._client)
            self._client = None
