import json
from datetime import timedelta

import pytest

from getnet_gateway.errors import PaymentNotFoundError
from getnet_gateway.schemas import PaymentStatus, RetryStatus

from tests.conftest import CALLBACK_URL, FIXED_NOW, make_payment


async def _event_types(event_store):
    return [e.event_type for e in reversed(await event_store.recent(limit=100))]


@pytest.mark.asyncio
async def test_no_callback_url_marks_delivered_without_network(orchestrator, payments, ledger, recorder):
    payment = await payments.create(make_payment(external_url_callback=None))

    assert await orchestrator.notify_if_configured(payment) is True

    assert recorder.requests == []
    assert (await payments.get("1001")).callback_executed is True
    assert await ledger.get("1001") is None


@pytest.mark.asyncio
async def test_already_delivered_is_a_noop(orchestrator, payments, ledger, recorder):
    payment = await payments.create(make_payment(callback_executed=True))

    assert await orchestrator.notify_if_configured(payment) is True

    assert recorder.requests == []
    assert await ledger.get("1001") is None


@pytest.mark.asyncio
async def test_successful_first_delivery(orchestrator, payments, ledger, recorder, event_store):
    payment = await payments.create(make_payment(status=PaymentStatus.APPROVED))

    assert await orchestrator.notify_if_configured(payment) is True

    assert len(recorder.requests) == 1
    body = json.loads(recorder.requests[0].content)
    assert body["isRetry"] is False
    assert body["attemptNumber"] == 1
    assert body["status"] == "APPROVED"
    assert (await payments.get("1001")).callback_executed is True
    assert await ledger.get("1001") is None
    assert "CALLBACK_SUCCESS" in await _event_types(event_store)


@pytest.mark.asyncio
async def test_first_delivery_failure_opens_ledger_entry(orchestrator, payments, ledger, recorder, event_store):
    """Subscriber answers 500: one PENDING entry, retry due in two minutes."""
    recorder.statuses = [500]
    payment = await payments.create(make_payment(status=PaymentStatus.APPROVED))

    assert await orchestrator.notify_if_configured(payment) is False

    entry = await ledger.get("1001")
    assert entry.status == RetryStatus.PENDING
    assert entry.attempts == 1
    assert entry.callback_url == CALLBACK_URL
    assert entry.next_retry_at == FIXED_NOW + timedelta(minutes=2)
    assert entry.last_status_code == 500
    assert entry.payment_data.payment_status == PaymentStatus.APPROVED
    assert (await payments.get("1001")).callback_executed is False
    assert "CALLBACK_FAILED" in await _event_types(event_store)


@pytest.mark.asyncio
async def test_retry_success_resolves_entry(orchestrator, payments, ledger, recorder, clock):
    """The same entry replayed later gets a 201 and the payment is delivered."""
    recorder.statuses = [500]
    payment = await payments.create(make_payment(status=PaymentStatus.APPROVED))
    await orchestrator.notify_if_configured(payment)

    clock.advance(minutes=2)
    recorder.statuses = [201]
    entry = await ledger.get("1001")

    assert await orchestrator.retry_one(entry) is True

    resolved = await ledger.get("1001")
    assert resolved.status == RetryStatus.SUCCESS
    assert resolved.success_at == clock.now
    assert resolved.next_retry_at is None
    assert resolved.last_status_code == 201
    assert (await payments.get("1001")).callback_executed is True

    body = json.loads(recorder.requests[-1].content)
    assert body["isRetry"] is True
    assert body["attemptNumber"] == 2
    assert recorder.requests[-1].headers["x-attempt-number"] == "2"


@pytest.mark.asyncio
async def test_retry_failure_reschedules_without_new_snapshot(orchestrator, payments, ledger, recorder, clock):
    recorder.statuses = [500]
    payment = await payments.create(make_payment(status=PaymentStatus.APPROVED))
    await orchestrator.notify_if_configured(payment)

    # a later status arrives in the store but the entry replays its own snapshot
    await payments.update_status("1001", PaymentStatus.REFUNDED)
    clock.advance(minutes=2)

    assert await orchestrator.retry_one(await ledger.get("1001")) is False

    entry = await ledger.get("1001")
    assert entry.attempts == 2
    assert entry.next_retry_at == clock.now + timedelta(minutes=3)
    assert entry.payment_data.payment_status == PaymentStatus.APPROVED
    assert json.loads(recorder.requests[-1].content)["status"] == "APPROVED"


@pytest.mark.asyncio
async def test_fresh_success_supersedes_pending_entry(orchestrator, payments, ledger, recorder):
    recorder.statuses = [500]
    payment = await payments.create(make_payment(status=PaymentStatus.PENDING))
    await orchestrator.notify_if_configured(payment)

    recorder.statuses = [200]
    updated = await payments.update_status("1001", PaymentStatus.APPROVED)
    assert await orchestrator.notify_if_configured(updated) is True

    assert (await ledger.get("1001")).status == RetryStatus.SUCCESS
    assert await ledger.due_entries() == []


@pytest.mark.asyncio
async def test_notify_status_change_unknown_payment(orchestrator):
    with pytest.raises(PaymentNotFoundError):
        await orchestrator.notify_status_change("missing", PaymentStatus.CREATED, PaymentStatus.APPROVED)


@pytest.mark.asyncio
async def test_notify_status_change_logs_info_event(orchestrator, payments, event_store):
    await payments.create(make_payment(status=PaymentStatus.REJECTED))

    assert await orchestrator.notify_status_change("1001", PaymentStatus.PENDING, PaymentStatus.REJECTED) is True

    info = [e for e in await event_store.recent(request_id="1001") if e.event_type == "INFO"]
    assert len(info) == 1
    assert info[0].payload["has_callback"] is True
    assert info[0].payload["new_status"] == "REJECTED"
