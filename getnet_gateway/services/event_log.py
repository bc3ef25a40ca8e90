"""
The Black Box
=============
Every significant gateway event is mirrored to the structured log and
persisted to the event store. Persistence is best-effort: a failing store
never aborts the operation that is being logged.
"""

from typing import Any, Dict, Optional

import structlog

from getnet_gateway.schemas import EventRecord, EventType, Severity
from getnet_gateway.storage import IEventStore

logger = structlog.get_logger().bind(component="event_log")

_LOG_METHODS = {
    "DEBUG": "debug",
    "INFO": "info",
    "WARN": "warning",
    "ERROR": "error",
    "CRITICAL": "critical",
}


class EventLog:

    def __init__(self, store: IEventStore):
        self.store = store

    async def log(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        request_id: Optional[str] = None,
        severity: Severity = "INFO",
    ) -> str:
        record = EventRecord(
            event_type=event_type,
            request_id=request_id,
            payload=payload,
            severity=severity,
        )

        log_method = getattr(logger, _LOG_METHODS.get(severity, "info"))
        log_method(
            event_type,
            event_id=record.id[:8],
            request_id=request_id,
            **{k: v for k, v in payload.items() if k not in ("event_id", "request_id")}
        )

        try:
            await self.store.append(record)
        except Exception as e:
            logger.error("event_persist_failed", event_type=event_type, error=str(e))

        return record.id
