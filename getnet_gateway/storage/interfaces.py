# storage/interfaces.py
# ============================================================================
# GETNET GATEWAY - PERSISTENCE INTERFACES
# ============================================================================
# Abstractions for the Postgres / in-memory swap. Services depend on these
# only.
# ============================================================================

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from getnet_gateway.config import CallbackSettings
from getnet_gateway.schemas import (
    EventRecord,
    NotificationRecord,
    Payment,
    PaymentSnapshot,
    PaymentStatus,
    RetryCallbackEntry,
)


def retry_delay(attempts: int, base_minutes: int = CallbackSettings.RETRY_BASE_MINUTES) -> timedelta:
    """Wait after the ``attempts``-th failure: attempt N -> N + 1 minutes."""
    return timedelta(minutes=(attempts + 1) * base_minutes)


class IPaymentRepository(ABC):

    @abstractmethod
    async def get(self, request_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        pass

    @abstractmethod
    async def update_status(
        self,
        request_id: str,
        status: PaymentStatus,
        provider_response: Optional[dict] = None,
        expected_status: Optional[PaymentStatus] = None,
    ) -> Optional[Payment]:
        """Set a new status, stamp last_status_update and clear the
        delivered flag so the new status is owed to the subscriber.

        With ``expected_status`` the write only happens if the stored status
        still equals it; otherwise None is returned and nothing changes.
        """
        pass

    @abstractmethod
    async def mark_callback_executed(self, request_id: str, executed: bool = True) -> bool:
        pass

    @abstractmethod
    async def append_notification(self, request_id: str, record: NotificationRecord) -> bool:
        pass

    @abstractmethod
    async def list_for_reconciliation(
        self,
        statuses: Iterable[PaymentStatus],
        created_since: datetime,
        limit: Optional[int] = None,
    ) -> List[Payment]:
        """Newest first."""
        pass


class IRetryLedger(ABC):
    """Durable record of callback delivery obligations, keyed by request_id.

    Every mutation must be a single atomic operation in the backing store:
    two overlapping sweeps may touch the same row.
    """

    @abstractmethod
    async def record_failure(
        self,
        request_id: str,
        *,
        error: Optional[str],
        status_code: int,
        callback_url: Optional[str] = None,
        reference: Optional[str] = None,
        snapshot: Optional[PaymentSnapshot] = None,
    ) -> Optional[RetryCallbackEntry]:
        """Record a failed attempt and schedule the next one.

        With ``snapshot`` the obligation is (re)opened: a missing or resolved
        entry starts over at attempts=1, a pending one is incremented and
        takes the newer snapshot. Without ``snapshot`` only a pending entry
        is incremented; returns None if there is none.
        """
        pass

    @abstractmethod
    async def record_success(
        self,
        request_id: str,
        *,
        status_code: Optional[int] = None,
        attempt_number: Optional[int] = None,
    ) -> Optional[RetryCallbackEntry]:
        pass

    @abstractmethod
    async def due_entries(self, limit: int = CallbackSettings.BATCH_SIZE) -> List[RetryCallbackEntry]:
        """Pending entries whose next_retry_at has passed, most overdue first."""
        pass

    @abstractmethod
    async def get(self, request_id: str) -> Optional[RetryCallbackEntry]:
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        pass


class IEventStore(ABC):

    @abstractmethod
    async def append(self, record: EventRecord) -> None:
        pass

    @abstractmethod
    async def recent(self, limit: int = 50, request_id: Optional[str] = None) -> List[EventRecord]:
        pass
