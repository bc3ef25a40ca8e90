# storage/memory.py
# ============================================================================
# GETNET GATEWAY - IN-MEMORY STORES
# ============================================================================
# Single-process implementations for development and tests. One asyncio.Lock
# per store stands in for the row-level atomicity Postgres provides.
# ============================================================================

import asyncio
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from getnet_gateway.config import CallbackSettings
from getnet_gateway.schemas import (
    EventRecord,
    NotificationRecord,
    Payment,
    PaymentSnapshot,
    PaymentStatus,
    RetryCallbackEntry,
    RetryStatus,
)
from getnet_gateway.storage.interfaces import (
    IEventStore,
    IPaymentRepository,
    IRetryLedger,
    retry_delay,
)
from getnet_gateway.timeutil import Clock, utcnow


class InMemoryPaymentRepository(IPaymentRepository):

    def __init__(self, clock: Clock = utcnow):
        self._payments: Dict[str, Payment] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, request_id: str) -> Optional[Payment]:
        async with self._lock:
            payment = self._payments.get(request_id)
            return payment.model_copy(deep=True) if payment else None

    async def create(self, payment: Payment) -> Payment:
        async with self._lock:
            if payment.request_id in self._payments:
                raise ValueError(f"Duplicate requestId: {payment.request_id}")
            self._payments[payment.request_id] = payment.model_copy(deep=True)
            return payment

    async def update_status(
        self,
        request_id: str,
        status: PaymentStatus,
        provider_response: Optional[dict] = None,
        expected_status: Optional[PaymentStatus] = None,
    ) -> Optional[Payment]:
        async with self._lock:
            payment = self._payments.get(request_id)
            if not payment:
                return None
            if expected_status is not None and payment.status != expected_status:
                return None
            now = self._clock()
            changes = {
                "status": status,
                "last_status_update": now,
                "callback_executed": False,
                "updated_at": now,
            }
            if provider_response is not None:
                changes["provider_response"] = provider_response
            payment = payment.model_copy(update=changes)
            self._payments[request_id] = payment
            return payment.model_copy(deep=True)

    async def mark_callback_executed(self, request_id: str, executed: bool = True) -> bool:
        async with self._lock:
            payment = self._payments.get(request_id)
            if not payment:
                return False
            self._payments[request_id] = payment.model_copy(
                update={"callback_executed": executed, "updated_at": self._clock()}
            )
            return True

    async def append_notification(self, request_id: str, record: NotificationRecord) -> bool:
        async with self._lock:
            payment = self._payments.get(request_id)
            if not payment:
                return False
            self._payments[request_id] = payment.model_copy(
                update={"notifications": [*payment.notifications, record]}
            )
            return True

    async def list_for_reconciliation(
        self,
        statuses: Iterable[PaymentStatus],
        created_since: datetime,
        limit: Optional[int] = None,
    ) -> List[Payment]:
        wanted = set(statuses)
        async with self._lock:
            matches = [
                p.model_copy(deep=True) for p in self._payments.values()
                if p.status in wanted and p.created_at >= created_since
            ]
        matches.sort(key=lambda p: p.created_at, reverse=True)
        return matches[:limit] if limit else matches


class InMemoryRetryLedger(IRetryLedger):

    def __init__(
        self,
        clock: Clock = utcnow,
        base_minutes: int = CallbackSettings.RETRY_BASE_MINUTES,
    ):
        self._entries: Dict[str, RetryCallbackEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._base_minutes = base_minutes

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
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(request_id)

            if snapshot is not None:
                if entry is None or entry.status == RetryStatus.SUCCESS:
                    if not callback_url and entry is None:
                        raise ValueError("callback_url is required to open a retry entry")
                    attempts = 1
                else:
                    attempts = entry.attempts + 1
                entry = RetryCallbackEntry(
                    request_id=request_id,
                    reference=reference or (entry.reference if entry else None),
                    callback_url=callback_url or entry.callback_url,
                    attempts=attempts,
                    payment_data=snapshot,
                    created_at=entry.created_at if entry else now,
                )
            elif entry is None or entry.status != RetryStatus.PENDING:
                return None
            else:
                attempts = entry.attempts + 1

            entry = entry.model_copy(update={
                "status": RetryStatus.PENDING,
                "attempts": attempts,
                "last_attempt": now,
                "last_error": error,
                "last_status_code": status_code,
                "next_retry_at": now + retry_delay(attempts, self._base_minutes),
                "success_at": None,
                "updated_at": now,
            })
            self._entries[request_id] = entry
            return entry.model_copy(deep=True)

    async def record_success(
        self,
        request_id: str,
        *,
        status_code: Optional[int] = None,
        attempt_number: Optional[int] = None,
    ) -> Optional[RetryCallbackEntry]:
        async with self._lock:
            entry = self._entries.get(request_id)
            if entry is None or entry.status != RetryStatus.PENDING:
                return None
            now = self._clock()
            entry = entry.model_copy(update={
                "status": RetryStatus.SUCCESS,
                "success_at": now,
                "next_retry_at": None,
                "last_error": None,
                "last_attempt": now,
                "last_status_code": status_code if status_code is not None else entry.last_status_code,
                "attempts": max(entry.attempts, attempt_number or 0),
                "updated_at": now,
            })
            self._entries[request_id] = entry
            return entry.model_copy(deep=True)

    async def due_entries(self, limit: int = CallbackSettings.BATCH_SIZE) -> List[RetryCallbackEntry]:
        async with self._lock:
            now = self._clock()
            due = [
                e for e in self._entries.values()
                if e.status == RetryStatus.PENDING
                and e.next_retry_at is not None
                and e.next_retry_at <= now
            ]
            due.sort(key=lambda e: e.next_retry_at)
            return [e.model_copy(deep=True) for e in due[:limit]]

    async def get(self, request_id: str) -> Optional[RetryCallbackEntry]:
        async with self._lock:
            entry = self._entries.get(request_id)
            return entry.model_copy(deep=True) if entry else None

    async def stats(self) -> Dict[str, int]:
        async with self._lock:
            counts = Counter(e.status.value for e in self._entries.values())
            return {
                "total": len(self._entries),
                "pending": counts.get(RetryStatus.PENDING.value, 0),
                "success": counts.get(RetryStatus.SUCCESS.value, 0),
            }


class InMemoryEventStore(IEventStore):
    """Append-only event log"""

    def __init__(self):
        self._events: List[EventRecord] = []
        self._lock = asyncio.Lock()

    async def append(self, record: EventRecord) -> None:
        async with self._lock:
            self._events.append(record)

    async def recent(self, limit: int = 50, request_id: Optional[str] = None) -> List[EventRecord]:
        async with self._lock:
            events = [e for e in self._events if request_id is None or e.request_id == request_id]
        return list(reversed(events))[:limit]
