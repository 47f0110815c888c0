from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from dispatcher.app.constants import DISPATCH_OUTCOME
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.core.backoff import retry_with_backoff
from dispatcher.app.domain.dispatch_summary import DispatchSummary
from dispatcher.app.domain.models import MalformedMessageError, Message, validate_message
from dispatcher.app.ports.message_repository import MessageRepository
from dispatcher.app.ports.message_sender import MessageSender, SenderError, SenderUnavailableError

T = TypeVar("T")


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class DispatchService:
    """
    Delivers unsent messages: claim, validate, send, record the outcome.

    max_retries bounds automatic retries of FAILED messages: a message is picked
    up again while attempt_count <= max_retries, so it gets max_retries + 1
    delivery attempts in total before it is left FAILED for inspection.
    Sender unavailability does not count as an attempt; the claim is released
    and the message stays PENDING. Malformed messages go straight to FAILED and
    are flagged permanent.
    """

    def __init__(
        self,
        repository: MessageRepository,
        sender: MessageSender,
        *,
        worker_id: str,
        max_retries: int,
        batch_size: int,
        claim_ttl_seconds: float,
        max_content_length: int = 1000,
        status_update_attempts: int = 3,
        store_retry_delay_seconds: float = 0.1,
    ) -> None:
        self._repository = repository
        self._sender = sender
        self._worker_id = worker_id
        self._max_retries = int(max_retries)
        self._batch_size = int(batch_size)
        self._claim_ttl = timedelta(seconds=claim_ttl_seconds)
        self._max_content_length = int(max_content_length)
        self._status_update_attempts = max(1, int(status_update_attempts))
        self._store_retry_delay_seconds = store_retry_delay_seconds

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def _stale_before(self, now: datetime) -> datetime:
        return now - self._claim_ttl

    async def dispatch_pending(self, stop_event: asyncio.Event | None = None) -> DispatchSummary:
        """Run one polling cycle over the oldest unsent messages."""
        summary = DispatchSummary()
        now = datetime.now(timezone.utc)
        messages = await self._repository.find_dispatchable(
            max_retries=self._max_retries,
            stale_before=self._stale_before(now),
            limit=self._batch_size,
        )
        summary.selected = len(messages)
        if not messages:
            _log("no_unsent_messages")
            return summary

        for index, message in enumerate(messages):
            if stop_event is not None and stop_event.is_set():
                _log("dispatch_interrupted", remaining=len(messages) - index)
                break
            try:
                outcome = await self.dispatch_message(message)
            except Exception as exc:
                logger.exception("dispatch failed for message {}: {}", message.id, exc)
                outcome = DISPATCH_OUTCOME.ERROR
            summary.record(outcome)

        _log("dispatch_cycle_completed", **summary.as_dict())
        return summary

    async def dispatch_message(self, message: Message) -> str:
        now = datetime.now(timezone.utc)
        token = uuid.uuid4().hex
        claimed = await self._repository.claim(
            message.id,
            token=token,
            worker_id=self._worker_id,
            now=now,
            stale_before=self._stale_before(now),
            max_retries=self._max_retries,
        )
        if claimed is None:
            _log("message_claim_lost", message_id=message.id)
            return DISPATCH_OUTCOME.SKIPPED
        _log("message_claimed", message_id=claimed.id, attempt_count=claimed.attempt_count)

        try:
            validate_message(claimed, self._max_content_length)
        except MalformedMessageError as exc:
            error_text = str(exc)
            await self._with_store_retries(
                "mark_failed",
                lambda: self._repository.mark_failed(claimed.id, token, error=error_text, permanent=True),
            )
            _log("message_malformed", message_id=claimed.id, error=error_text)
            return DISPATCH_OUTCOME.FAILED_PERMANENT

        try:
            receipt = await self._sender.send(claimed.recipient, claimed.content)
        except asyncio.CancelledError:
            try:
                await asyncio.shield(
                    self._repository.release(claimed.id, token, error="dispatch cancelled")
                )
                _log("message_released", message_id=claimed.id, reason="cancelled")
            except Exception as exc:
                logger.warning("claim release after cancellation failed: {}", exc)
            raise
        except SenderUnavailableError as exc:
            error_text = str(exc)
            await self._with_store_retries(
                "release",
                lambda: self._repository.release(claimed.id, token, error=error_text),
            )
            _log("message_deferred", message_id=claimed.id, error=error_text)
            return DISPATCH_OUTCOME.DEFERRED
        except Exception as exc:
            error_text = str(exc) or type(exc).__name__
            if not isinstance(exc, SenderError):
                logger.exception("unexpected sender failure: {}", exc)
            failed = await self._with_store_retries(
                "mark_failed",
                lambda: self._repository.mark_failed(claimed.id, token, error=error_text),
            )
            attempt_count = failed.attempt_count if failed is not None else claimed.attempt_count + 1
            _log(
                "message_failed",
                message_id=claimed.id,
                attempt_count=attempt_count,
                retries_exhausted=attempt_count > self._max_retries,
                error=error_text,
            )
            return DISPATCH_OUTCOME.FAILED

        sent_at = datetime.now(timezone.utc)
        recorded = await self._with_store_retries(
            "mark_sent",
            lambda: self._repository.mark_sent(
                claimed.id,
                token,
                sent_at=sent_at,
                provider_message_id=receipt.message_id,
            ),
        )
        if not recorded:
            logger.warning("message {} was sent but its claim was lost before recording", claimed.id)
        _log("message_sent", message_id=claimed.id, provider_message_id=receipt.message_id)
        return DISPATCH_OUTCOME.SENT

    async def _with_store_retries(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        return await retry_with_backoff(
            call,
            initial_delay=self._store_retry_delay_seconds,
            max_delay=self._store_retry_delay_seconds * 10,
            multiplier=2.0,
            max_attempts=self._status_update_attempts,
            operation=operation,
        )
