"""Index definitions for the messages collection."""
from __future__ import annotations

from pymongo import ASCENDING

# Worker fetch of unsent (pending/failed) messages, oldest first.
IDX_STATUS_CREATED_AT = "idx_status_created_at"
# Listing messages in one status, e.g. everything already sent.
IDX_STATUS = "idx_status"
# Recipient lookup; sparse because not every message has one.
IDX_RECIPIENT = "idx_recipient"

MESSAGE_INDEXES: tuple[tuple[list[tuple[str, int]], dict], ...] = (
    ([("status", ASCENDING), ("created_at", ASCENDING)], {"name": IDX_STATUS_CREATED_AT}),
    ([("status", ASCENDING)], {"name": IDX_STATUS}),
    ([("recipient", ASCENDING)], {"name": IDX_RECIPIENT, "sparse": True}),
)
