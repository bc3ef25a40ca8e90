# schemas/__init__.py
from getnet_gateway.schemas.payments import (
    Buyer,
    NON_TERMINAL_STATUSES,
    NotificationRecord,
    Payment,
    PaymentSnapshot,
    PaymentStatus,
    ProviderStatus,
    RetryCallbackEntry,
    RetryStatus,
    StatusTransition,
)
from getnet_gateway.schemas.delivery import (
    CallbackPayload,
    CallbackRequest,
    Delivered,
    DeliveryResult,
    HttpFailure,
    TimedOut,
    TransportFailure,
)
from getnet_gateway.schemas.events import EventRecord, EventType, Severity
from getnet_gateway.schemas.summaries import (
    BatchSummary,
    ItemError,
    ReconciliationSummary,
    SweepSummary,
)

__all__ = [
    "Buyer",
    "NON_TERMINAL_STATUSES",
    "NotificationRecord",
    "Payment",
    "PaymentSnapshot",
    "PaymentStatus",
    "ProviderStatus",
    "RetryCallbackEntry",
    "RetryStatus",
    "StatusTransition",
    "CallbackPayload",
    "CallbackRequest",
    "Delivered",
    "DeliveryResult",
    "HttpFailure",
    "TimedOut",
    "TransportFailure",
    "EventRecord",
    "EventType",
    "Severity",
    "BatchSummary",
    "ItemError",
    "ReconciliationSummary",
    "SweepSummary",
]
