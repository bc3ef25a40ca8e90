# schemas/events.py
# ============================================================================
# GETNET GATEWAY - BLACK BOX EVENT TYPES
# ============================================================================

import uuid
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from getnet_gateway.timeutil import utcnow

EventType = Literal[
    # Core operations
    "PAYMENT_CREATED",
    "NOTIFICATION_RECEIVED",
    "NOTIFICATION_INVALID_SIGNATURE",
    "STATUS_QUERY",
    "ERROR",
    "INFO",

    # Callback operations
    "CALLBACK_SUCCESS",
    "CALLBACK_FAILED",

    # Cron operations
    "CRON_STARTED",
    "CRON_RECONCILIATION",
    "CRON_PAYMENT_UPDATED",
    "CRON_CALLBACKS",
    "CRON_CALLBACK_SUCCESS",
    "CRON_CALLBACK_FAILED",
    "CRON_COMPLETED",
    "CRON_ERROR",

    # Health
    "HEALTH_CHECK",
    "HEALTH_CHECK_ERROR",
]

Severity = Literal["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]


class EventRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    request_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    severity: Severity = "INFO"
    timestamp: datetime = Field(default_factory=utcnow)
