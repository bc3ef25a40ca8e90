# storage/__init__.py
# ============================================================================
# GETNET GATEWAY - STORAGE MODULE
# ============================================================================
# Repository interfaces plus Postgres and in-memory implementations
# ============================================================================

from getnet_gateway.storage.interfaces import (
    IEventStore,
    IPaymentRepository,
    IRetryLedger,
    retry_delay,
)
from getnet_gateway.storage.memory import (
    InMemoryEventStore,
    InMemoryPaymentRepository,
    InMemoryRetryLedger,
)
from getnet_gateway.storage.postgres import (
    PostgresEventStore,
    PostgresPaymentRepository,
    PostgresRetryLedger,
)

__all__ = [
    "IEventStore",
    "IPaymentRepository",
    "IRetryLedger",
    "retry_delay",
    "InMemoryEventStore",
    "InMemoryPaymentRepository",
    "InMemoryRetryLedger",
    "PostgresEventStore",
    "PostgresPaymentRepository",
    "PostgresRetryLedger",
]
