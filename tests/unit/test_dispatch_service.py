"""Unit tests for DispatchService: outcomes, retry limit, claims and cancellation."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from dispatcher.app.constants import DISPATCH_OUTCOME, MESSAGE_STATUS
from dispatcher.app.infrastructure.persistence.inmemory.in_memory_repository import InMemoryRepository
from dispatcher.app.infrastructure.sender.inmemory.in_memory_sender import InMemorySender
from dispatcher.app.ports.message_sender import SenderDeliveryError, SenderUnavailableError
from tests.factories import RECIPIENT, BlockingSender, build_service, message_doc


def test_pending_messages_are_sent_oldest_first(repository, sender):
    newer = repository.insert_document(message_doc(minutes=5, content="second"))
    older = repository.insert_document(message_doc(minutes=1, content="first"))
    svc = build_service(repository, sender)

    summary = asyncio.run(svc.dispatch_pending())

    assert summary.selected == 2
    assert summary.count(DISPATCH_OUTCOME.SENT) == 2
    assert [content for _, content in sender.sent] == ["first", "second"]
    for message_id in (older, newer):
        doc = repository.document(message_id)
        assert doc["status"] == MESSAGE_STATUS.SENT
        assert doc["sent_at"] is not None
        assert doc["provider_message_id"]
        assert doc["claim"] is None
        assert doc["attempt_count"] == 0


def test_batch_size_limits_messages_per_cycle(repository, sender):
    for minute in range(5):
        repository.insert_document(message_doc(minutes=minute, content=f"m{minute}"))
    svc = build_service(repository, sender, batch_size=2)

    summary = asyncio.run(svc.dispatch_pending())

    assert summary.selected == 2
    assert [content for _, content in sender.sent] == ["m0", "m1"]


def test_empty_store_is_a_noop(repository, sender):
    summary = asyncio.run(build_service(repository, sender).dispatch_pending())

    assert summary.selected == 0
    assert summary.processed == 0
    assert sender.calls == 0


@pytest.mark.parametrize(
    "doc_overrides",
    [
        {"recipient": None},
        {"recipient": "   "},
        {"content": ""},
        {"content": None},
        {"content": "x" * 1001},
    ],
)
def test_malformed_message_fails_permanently_without_sending(repository, sender, doc_overrides):
    message_id = repository.insert_document(message_doc(**doc_overrides))
    svc = build_service(repository, sender)

    summary = asyncio.run(svc.dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.FAILED_PERMANENT) == 1
    assert sender.calls == 0
    doc = repository.document(message_id)
    assert doc["status"] == MESSAGE_STATUS.FAILED
    assert doc["permanent_failure"] is True
    assert doc["attempt_count"] == 0
    assert doc["last_error"]

    follow_up = asyncio.run(svc.dispatch_pending())
    assert follow_up.selected == 0


def test_content_at_max_length_is_deliverable(repository, sender):
    message_id = repository.insert_document(message_doc(content="x" * 1000))

    asyncio.run(build_service(repository, sender).dispatch_pending())

    assert repository.document(message_id)["status"] == MESSAGE_STATUS.SENT


def test_delivery_failure_marks_failed_and_increments_attempts(repository):
    sender = InMemorySender(fail_with=SenderDeliveryError("rejected by gateway"))
    message_id = repository.insert_document(message_doc())
    svc = build_service(repository, sender)

    summary = asyncio.run(svc.dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.FAILED) == 1
    doc = repository.document(message_id)
    assert doc["status"] == MESSAGE_STATUS.FAILED
    assert doc["attempt_count"] == 1
    assert doc["last_error"] == "rejected by gateway"
    assert doc["permanent_failure"] is False
    assert doc["claim"] is None


def test_failed_message_is_retried_until_limit_then_left_failed(repository):
    sender = InMemorySender(fail_with=SenderDeliveryError("rejected"))
    message_id = repository.insert_document(message_doc())
    svc = build_service(repository, sender, max_retries=2)

    async def _run() -> None:
        for _ in range(5):
            await svc.dispatch_pending()

    asyncio.run(_run())

    doc = repository.document(message_id)
    assert sender.calls == 3
    assert doc["status"] == MESSAGE_STATUS.FAILED
    assert doc["attempt_count"] == 3


def test_failed_message_is_sent_on_retry(repository):
    sender = InMemorySender(fail_with=SenderDeliveryError("rejected"))
    message_id = repository.insert_document(message_doc())
    svc = build_service(repository, sender)

    async def _run() -> None:
        await svc.dispatch_pending()
        sender.fail_with = None
        await svc.dispatch_pending()

    asyncio.run(_run())

    doc = repository.document(message_id)
    assert doc["status"] == MESSAGE_STATUS.SENT
    assert doc["attempt_count"] == 1
    assert doc["last_error"] is None


def test_sender_unavailable_leaves_message_pending(repository):
    sender = InMemorySender(fail_with=SenderUnavailableError("gateway down"))
    message_id = repository.insert_document(message_doc())
    svc = build_service(repository, sender)

    summary = asyncio.run(svc.dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.DEFERRED) == 1
    doc = repository.document(message_id)
    assert doc["status"] == MESSAGE_STATUS.PENDING
    assert doc["attempt_count"] == 0
    assert doc["claim"] is None
    assert doc["last_error"] == "gateway down"


def test_unexpected_sender_exception_counts_as_failed_attempt(repository):
    sender = InMemorySender(fail_with=RuntimeError("boom"))
    message_id = repository.insert_document(message_doc())

    summary = asyncio.run(build_service(repository, sender).dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.FAILED) == 1
    assert repository.document(message_id)["attempt_count"] == 1


def test_message_claimed_by_another_worker_is_skipped(repository, sender):
    message_id = repository.insert_document(message_doc())
    svc = build_service(repository, sender)

    async def _run() -> str:
        [candidate] = await repository.find_dispatchable(
            max_retries=3, stale_before=datetime.now(timezone.utc) - timedelta(minutes=5)
        )
        now = datetime.now(timezone.utc)
        await repository.claim(
            message_id,
            token="other-token",
            worker_id="other-worker",
            now=now,
            stale_before=now - timedelta(minutes=5),
            max_retries=3,
        )
        return await svc.dispatch_message(candidate)

    outcome = asyncio.run(_run())

    assert outcome == DISPATCH_OUTCOME.SKIPPED
    assert sender.calls == 0
    assert repository.document(message_id)["claim"]["worker_id"] == "other-worker"


def test_fresh_claim_hides_message_but_stale_claim_is_taken_over(repository, sender):
    now = datetime.now(timezone.utc)
    fresh = repository.insert_document(
        message_doc(minutes=0, claim={"token": "t1", "worker_id": "w1", "claimed_at": now})
    )
    stale = repository.insert_document(
        message_doc(
            minutes=1,
            claim={"token": "t2", "worker_id": "w2", "claimed_at": now - timedelta(hours=1)},
        )
    )

    summary = asyncio.run(build_service(repository, sender, claim_ttl_seconds=300).dispatch_pending())

    assert summary.selected == 1
    assert repository.document(stale)["status"] == MESSAGE_STATUS.SENT
    assert repository.document(fresh)["status"] == MESSAGE_STATUS.PENDING


def test_cancellation_mid_send_releases_claim(repository):
    sender = BlockingSender()
    message_id = repository.insert_document(message_doc())
    svc = build_service(repository, sender)

    async def _run() -> None:
        task = asyncio.create_task(svc.dispatch_pending())
        await sender.started.wait()
        assert repository.document(message_id)["claim"] is not None
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())

    doc = repository.document(message_id)
    assert doc["status"] == MESSAGE_STATUS.PENDING
    assert doc["claim"] is None
    assert doc["attempt_count"] == 0
    assert doc["last_error"] == "dispatch cancelled"


def test_stop_event_interrupts_cycle_between_messages(repository, sender):
    repository.insert_document(message_doc(minutes=0))
    repository.insert_document(message_doc(minutes=1))
    stop_event = asyncio.Event()
    stop_event.set()

    summary = asyncio.run(build_service(repository, sender).dispatch_pending(stop_event))

    assert summary.selected == 2
    assert summary.processed == 0
    assert sender.calls == 0


def test_sent_messages_are_never_touched(repository, sender):
    sent_at = datetime(2024, 1, 2, tzinfo=timezone.utc)
    message_id = repository.insert_document(
        message_doc(status=MESSAGE_STATUS.SENT, sent_at=sent_at, provider_message_id="p-1")
    )
    before = repository.document(message_id)

    summary = asyncio.run(build_service(repository, sender).dispatch_pending())

    assert summary.selected == 0
    assert repository.document(message_id) == before


class FlakyMarkSentRepository(InMemoryRepository):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.mark_sent_calls = 0

    async def mark_sent(self, message_id, token, *, sent_at, provider_message_id):  # noqa: ANN001
        self.mark_sent_calls += 1
        if self.mark_sent_calls <= self.failures:
            raise ConnectionError("store unavailable")
        return await super().mark_sent(
            message_id, token, sent_at=sent_at, provider_message_id=provider_message_id
        )


def test_outcome_write_is_retried(sender):
    repository = FlakyMarkSentRepository(failures=2)
    message_id = repository.insert_document(message_doc())

    summary = asyncio.run(build_service(repository, sender, status_update_attempts=3).dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.SENT) == 1
    assert repository.mark_sent_calls == 3
    assert repository.document(message_id)["status"] == MESSAGE_STATUS.SENT


def test_outcome_write_exhaustion_is_contained_and_claim_kept(sender):
    repository = FlakyMarkSentRepository(failures=10)
    message_id = repository.insert_document(message_doc())

    summary = asyncio.run(build_service(repository, sender, status_update_attempts=2).dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.ERROR) == 1
    doc = repository.document(message_id)
    assert doc["status"] == MESSAGE_STATUS.PENDING
    assert doc["claim"] is not None


def test_always_succeeding_sender_eventually_sends_everything(repository, sender):
    for minute in range(25):
        repository.insert_document(message_doc(minutes=minute % 7, content=f"m{minute}"))
    svc = build_service(repository, sender, batch_size=4)

    async def _run() -> int:
        cycles = 0
        while await repository.count_by_status([MESSAGE_STATUS.PENDING]) and cycles < 20:
            await svc.dispatch_pending()
            cycles += 1
            statuses = {m.status for m in await repository.find_by_status_ordered(MESSAGE_STATUS.ALL)}
            assert statuses <= set(MESSAGE_STATUS.ALL)
        return cycles

    cycles = asyncio.run(_run())

    assert cycles == 7
    assert len(sender.sent) == 25
    assert all(recipient == RECIPIENT for recipient, _ in sender.sent)
    assert asyncio.run(repository.count_by_status([MESSAGE_STATUS.SENT])) == 25


def test_garbled_attempt_count_does_not_block_the_cycle(repository, sender):
    odd = repository.insert_document(message_doc(minutes=0, attempt_count="n/a", content="odd"))
    ok = repository.insert_document(message_doc(minutes=1, content="ok"))
    svc = build_service(repository, sender)

    summary = asyncio.run(svc.dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.SENT) == 2
    assert repository.document(odd)["status"] == MESSAGE_STATUS.SENT
    assert repository.document(ok)["status"] == MESSAGE_STATUS.SENT


def test_failed_message_without_attempt_count_is_retried(repository, sender):
    doc = message_doc(status=MESSAGE_STATUS.FAILED)
    del doc["attempt_count"]
    message_id = repository.insert_document(doc)
    svc = build_service(repository, sender)

    summary = asyncio.run(svc.dispatch_pending())

    assert summary.count(DISPATCH_OUTCOME.SENT) == 1
    assert repository.document(message_id)["status"] == MESSAGE_STATUS.SENT
