from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from getnet_gateway.errors import ProviderError
from getnet_gateway.schemas import PaymentStatus, SweepSummary
from getnet_gateway.services.getnet_client import GetnetClient, SessionStatus
from getnet_gateway.services.orchestrator import CallbackOrchestrator
from getnet_gateway.tasks import ReconciliationScheduler, RetrySweeper

from tests.conftest import FIXED_NOW, make_payment


def _client(statuses):
    """Getnet client stub answering query_status from a request_id -> status map."""
    client = MagicMock(spec=GetnetClient)

    async def query_status(request_id):
        status = statuses[request_id]
        if isinstance(status, Exception):
            raise status
        return SessionStatus(status=status, date="2025-01-15T11:59:00-03:00", raw={"requestId": request_id})

    client.query_status = AsyncMock(side_effect=query_status)
    return client


def _sweeper():
    sweeper = MagicMock(spec=RetrySweeper)
    sweeper.run = AsyncMock(return_value=SweepSummary(processed=2, succeeded=1, failed=1))
    return sweeper


def _scheduler(payments, client, orchestrator, events, clock, sweeper=None):
    return ReconciliationScheduler(
        payments,
        client,
        orchestrator,
        sweeper or _sweeper(),
        events,
        clock=clock,
        delay_seconds=0,
    )


@pytest.mark.asyncio
async def test_upstream_change_updates_and_notifies_once(payments, events, clock):
    """CREATED locally, APPROVED upstream: stored, recorded, notified exactly once."""
    await payments.create(make_payment())
    orchestrator = AsyncMock(spec=CallbackOrchestrator)
    orchestrator.notify_status_change.return_value = True
    client = _client({"1001": PaymentStatus.APPROVED})

    summary = await _scheduler(payments, client, orchestrator, events, clock).reconcile(7)

    assert summary.checked == 1
    assert summary.updated == 1
    assert summary.errors == []
    transition = summary.transitions[0]
    assert transition.old_status == PaymentStatus.CREATED
    assert transition.new_status == PaymentStatus.APPROVED
    assert transition.callback_notified is True

    stored = await payments.get("1001")
    assert stored.status == PaymentStatus.APPROVED
    assert stored.last_status_update == FIXED_NOW
    assert stored.provider_response == {"requestId": "1001"}

    orchestrator.notify_status_change.assert_awaited_once_with(
        "1001", PaymentStatus.CREATED, PaymentStatus.APPROVED
    )


@pytest.mark.asyncio
async def test_unchanged_status_is_not_notified(payments, events, clock):
    await payments.create(make_payment(status=PaymentStatus.PENDING))
    orchestrator = AsyncMock(spec=CallbackOrchestrator)

    summary = await _scheduler(
        payments, _client({"1001": PaymentStatus.PENDING}), orchestrator, events, clock
    ).reconcile(7)

    assert summary.checked == 1
    assert summary.updated == 0
    orchestrator.notify_status_change.assert_not_awaited()


@pytest.mark.asyncio
async def test_any_new_status_is_notified(payments, events, clock, orchestrator, recorder):
    await payments.create(make_payment(status=PaymentStatus.PENDING))

    summary = await _scheduler(
        payments, _client({"1001": PaymentStatus.REJECTED}), orchestrator, events, clock
    ).reconcile(7)

    assert summary.updated == 1
    assert len(recorder.requests) == 1
    assert (await payments.get("1001")).callback_executed is True


@pytest.mark.asyncio
async def test_candidates_newest_first_and_within_window(payments, events, clock):
    await payments.create(make_payment("old", created_at=FIXED_NOW - timedelta(days=10)))
    await payments.create(make_payment("older", created_at=FIXED_NOW - timedelta(days=3)))
    await payments.create(make_payment("newer", created_at=FIXED_NOW - timedelta(days=1)))
    await payments.create(make_payment("done", status=PaymentStatus.APPROVED))
    client = _client({
        "older": PaymentStatus.CREATED,
        "newer": PaymentStatus.CREATED,
    })

    summary = await _scheduler(payments, client, AsyncMock(spec=CallbackOrchestrator), events, clock).reconcile(7)

    assert summary.checked == 2
    assert [c.args[0] for c in client.query_status.await_args_list] == ["newer", "older"]


@pytest.mark.asyncio
async def test_item_error_is_recorded_and_batch_continues(payments, events, clock):
    await payments.create(make_payment("a", created_at=FIXED_NOW - timedelta(hours=2)))
    await payments.create(make_payment("b", created_at=FIXED_NOW - timedelta(hours=1)))
    orchestrator = AsyncMock(spec=CallbackOrchestrator)
    orchestrator.notify_status_change.return_value = True
    client = _client({
        "b": ProviderError("Getnet unavailable", status_code=503),
        "a": PaymentStatus.APPROVED,
    })

    summary = await _scheduler(payments, client, orchestrator, events, clock).reconcile(7)

    assert summary.checked == 2
    assert summary.updated == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].request_id == "b"
    assert "Getnet unavailable" in summary.errors[0].error
    assert (await payments.get("a")).status == PaymentStatus.APPROVED


@pytest.mark.parametrize("requested,expected", [(None, 7), (0, 1), (-5, 1), (15, 15), (90, 30)])
def test_lookback_is_clamped(payments, events, clock, requested, expected):
    scheduler = _scheduler(payments, _client({}), AsyncMock(spec=CallbackOrchestrator), events, clock)
    assert scheduler.clamp_days(requested) == expected


@pytest.mark.asyncio
async def test_run_combines_both_phases(payments, events, clock, event_store):
    await payments.create(make_payment())
    orchestrator = AsyncMock(spec=CallbackOrchestrator)
    orchestrator.notify_status_change.return_value = True
    sweeper = _sweeper()

    summary = await _scheduler(
        payments, _client({"1001": PaymentStatus.APPROVED}), orchestrator, events, clock, sweeper
    ).run(days_back=3)

    assert summary.success is True
    assert summary.reconciliation.days_back == 3
    assert summary.reconciliation.updated == 1
    assert summary.callbacks.processed == 2
    assert summary.duration >= 0
    sweeper.run.assert_awaited_once()

    types = [e.event_type for e in await event_store.recent(limit=100)]
    assert "CRON_STARTED" in types
    assert "CRON_COMPLETED" in types


@pytest.mark.asyncio
async def test_run_skips_phases(payments, events, clock):
    sweeper = _sweeper()
    client = _client({})
    scheduler = _scheduler(payments, client, AsyncMock(spec=CallbackOrchestrator), events, clock, sweeper)

    only_callbacks = await scheduler.run(skip_reconciliation=True)
    assert only_callbacks.reconciliation is None
    assert only_callbacks.callbacks is not None

    only_reconcile = await scheduler.run(skip_callback_retries=True)
    assert only_reconcile.callbacks is None
    assert only_reconcile.reconciliation is not None
    sweeper.run.assert_awaited_once()


@pytest.mark.asyncio
async def test_listing_failure_fails_the_batch(events, clock, event_store):
    payments = MagicMock()
    payments.list_for_reconciliation = AsyncMock(side_effect=RuntimeError("connection lost"))
    sweeper = _sweeper()

    summary = await _scheduler(
        payments, _client({}), AsyncMock(spec=CallbackOrchestrator), events, clock, sweeper
    ).run()

    assert summary.success is False
    assert summary.error == "connection lost"
    sweeper.run.assert_not_awaited()
    assert "CRON_ERROR" in [e.event_type for e in await event_store.recent()]


@pytest.mark.asyncio
async def test_status_applied_by_notification_meanwhile_is_not_resent(payments, events, clock, orchestrator, recorder):
    """The listing saw CREATED, but a notification applies APPROVED before the poll answers."""
    await payments.create(make_payment())
    client = MagicMock(spec=GetnetClient)

    async def query_status(request_id):
        await payments.update_status(request_id, PaymentStatus.APPROVED)
        await orchestrator.notify_status_change(request_id, PaymentStatus.CREATED, PaymentStatus.APPROVED)
        return SessionStatus(status=PaymentStatus.APPROVED, date="2025-01-15T11:59:00-03:00", raw={})

    client.query_status = AsyncMock(side_effect=query_status)

    summary = await _scheduler(payments, client, orchestrator, events, clock).reconcile(7)

    assert summary.checked == 1
    assert summary.updated == 0
    assert summary.transitions == []
    assert len(recorder.requests) == 1
    assert (await payments.get("1001")).callback_executed is True


@pytest.mark.asyncio
async def test_conditional_status_update(payments, clock):
    await payments.create(make_payment(status=PaymentStatus.PENDING, callback_executed=True))

    stale = await payments.update_status("1001", PaymentStatus.APPROVED, expected_status=PaymentStatus.CREATED)
    assert stale is None
    stored = await payments.get("1001")
    assert stored.status == PaymentStatus.PENDING
    assert stored.callback_executed is True

    applied = await payments.update_status("1001", PaymentStatus.APPROVED, expected_status=PaymentStatus.PENDING)
    assert applied.status == PaymentStatus.APPROVED
    assert applied.callback_executed is False
