from unittest.mock import AsyncMock, MagicMock

import pytest

from getnet_gateway.services.event_log import EventLog
from getnet_gateway.storage import IEventStore


@pytest.mark.asyncio
async def test_event_is_persisted(events, event_store):
    event_id = await events.log("PAYMENT_CREATED", {"reference": "ORDER-1"}, request_id="1001")

    [record] = await event_store.recent()
    assert record.id == event_id
    assert record.event_type == "PAYMENT_CREATED"
    assert record.request_id == "1001"
    assert record.payload == {"reference": "ORDER-1"}
    assert record.severity == "INFO"


@pytest.mark.asyncio
async def test_recent_filters_by_request(events, event_store):
    await events.log("INFO", {"n": 1}, request_id="a")
    await events.log("INFO", {"n": 2}, request_id="b")
    await events.log("INFO", {"n": 3}, request_id="a")

    assert [e.payload["n"] for e in await event_store.recent(request_id="a")] == [3, 1]


@pytest.mark.asyncio
async def test_store_failure_does_not_propagate():
    store = MagicMock(spec=IEventStore)
    store.append = AsyncMock(side_effect=RuntimeError("disk full"))

    event_id = await EventLog(store).log("ERROR", {"request_id": "shadowed"}, severity="ERROR")

    assert event_id
    store.append.assert_awaited_once()
