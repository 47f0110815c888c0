"""Dispatcher-level constants shared across modules."""
from __future__ import annotations

from enum import Enum


class MESSAGE_STATUS:
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    ALL = (PENDING, SENT, FAILED)
    # Statuses the worker picks up on each cycle.
    UNSENT = (PENDING, FAILED)


class DISPATCH_OUTCOME:
    SENT = "sent"
    FAILED = "failed"
    FAILED_PERMANENT = "failed_permanent"
    DEFERRED = "deferred"
    SKIPPED = "skipped"
    ERROR = "error"


class WorkerState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
