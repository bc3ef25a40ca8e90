# storage/postgres.py
# ============================================================================
# GETNET GATEWAY - POSTGRES STORES
# ============================================================================
# asyncpg-backed repositories. Ledger mutations are single statements
# (INSERT ... ON CONFLICT / UPDATE ... RETURNING) so concurrent sweeps never
# lose an increment.
# ============================================================================

import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from getnet_gateway.config import CallbackSettings
from getnet_gateway.database import Database
from getnet_gateway.schemas import (
    EventRecord,
    NotificationRecord,
    Payment,
    PaymentSnapshot,
    PaymentStatus,
    RetryCallbackEntry,
)
from getnet_gateway.storage.interfaces import IEventStore, IPaymentRepository, IRetryLedger
from getnet_gateway.timeutil import Clock, utcnow


def _loads(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _row_to_payment(row) -> Payment:
    data = dict(row)
    for key in ("buyer", "provider_response", "notifications"):
        data[key] = _loads(data.get(key))
    data["buyer"] = data.get("buyer") or {}
    data["notifications"] = data.get("notifications") or []
    data["amount"] = float(data["amount"])
    return Payment(**data)


def _row_to_entry(row) -> RetryCallbackEntry:
    data = dict(row)
    data["payment_data"] = _loads(data["payment_data"])
    return RetryCallbackEntry(**data)


# =============================================================================
# PAYMENTS
# =============================================================================

# $5 = expected current status, NULL for an unconditional write
UPDATE_STATUS_SQL = """
    UPDATE payments
    SET status = $2,
        last_status_update = $3,
        callback_executed = FALSE,
        provider_response = COALESCE($4::jsonb, provider_response),
        updated_at = $3
    WHERE request_id = $1
      AND ($5::text IS NULL OR status = $5::text)
    RETURNING *
"""

class PostgresPaymentRepository(IPaymentRepository):

    def __init__(self, db: Database, clock: Clock = utcnow):
        self.db = db
        self._clock = clock

    async def get(self, request_id: str) -> Optional[Payment]:
        row = await self.db.fetch_one(
            "SELECT * FROM payments WHERE request_id = $1",
            request_id,
        )
        return _row_to_payment(row) if row else None

    async def create(self, payment: Payment) -> Payment:
        row = await self.db.fetch_one(
            """
            INSERT INTO payments
            (request_id, reference, amount, currency, status, buyer,
             external_url_callback, callback_executed, process_url,
             provider_response, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10::jsonb, $11, $11)
            RETURNING *
            """,
            payment.request_id,
            payment.reference,
            payment.amount,
            payment.currency,
            payment.status.value,
            json.dumps(payment.buyer.model_dump(exclude_none=True)),
            payment.external_url_callback,
            payment.callback_executed,
            payment.process_url,
            json.dumps(payment.provider_response) if payment.provider_response else None,
            payment.created_at,
        )
        return _row_to_payment(row)

    async def update_status(
        self,
        request_id: str,
        status: PaymentStatus,
        provider_response: Optional[dict] = None,
        expected_status: Optional[PaymentStatus] = None,
    ) -> Optional[Payment]:
        row = await self.db.fetch_one(
            UPDATE_STATUS_SQL,
            request_id,
            status.value,
            self._clock(),
            json.dumps(provider_response) if provider_response is not None else None,
            expected_status.value if expected_status is not None else None,
        )
        return _row_to_payment(row) if row else None

    async def mark_callback_executed(self, request_id: str, executed: bool = True) -> bool:
        result = await self.db.execute(
            """
            UPDATE payments
            SET callback_executed = $2, updated_at = $3
            WHERE request_id = $1
            """,
            request_id,
            executed,
            self._clock(),
        )
        return "UPDATE 1" in result

    async def append_notification(self, request_id: str, record: NotificationRecord) -> bool:
        result = await self.db.execute(
            """
            UPDATE payments
            SET notifications = notifications || $2::jsonb, updated_at = $3
            WHERE request_id = $1
            """,
            request_id,
            json.dumps([record.model_dump(mode="json")]),
            self._clock(),
        )
        return "UPDATE 1" in result

    async def list_for_reconciliation(
        self,
        statuses: Iterable[PaymentStatus],
        created_since: datetime,
        limit: Optional[int] = None,
    ) -> List[Payment]:
        query = """
            SELECT * FROM payments
            WHERE status = ANY($1::text[])
              AND created_at >= $2
            ORDER BY created_at DESC
        """
        params: List[Any] = [[s.value for s in statuses], created_since]
        if limit:
            query += " LIMIT $3"
            params.append(limit)

        rows = await self.db.fetch_all(query, *params)
        return [_row_to_payment(row) for row in rows]


# =============================================================================
# RETRY LEDGER
# =============================================================================

# $4 = now, $8 = base minutes. Inside DO UPDATE, rc.* is the old row.
UPSERT_FAILURE_SQL = """
    INSERT INTO retry_callbacks AS rc
    (request_id, reference, callback_url, status, attempts, next_retry_at,
     last_attempt, last_error, last_status_code, payment_data, created_at, updated_at)
    VALUES ($1, $2, $3, 'PENDING', 1, $4::timestamptz + make_interval(mins => 2 * $8::int),
            $4, $5, $6, $7::jsonb, $4, $4)
    ON CONFLICT (request_id) DO UPDATE SET
        attempts = CASE WHEN rc.status = 'PENDING' THEN rc.attempts + 1 ELSE 1 END,
        next_retry_at = $4::timestamptz + make_interval(
            mins => ((CASE WHEN rc.status = 'PENDING' THEN rc.attempts + 1 ELSE 1 END) + 1) * $8::int
        ),
        status = 'PENDING',
        reference = COALESCE(EXCLUDED.reference, rc.reference),
        callback_url = EXCLUDED.callback_url,
        payment_data = EXCLUDED.payment_data,
        last_attempt = $4,
        last_error = $5,
        last_status_code = $6,
        success_at = NULL,
        updated_at = $4
    RETURNING *
"""

# In an UPDATE the right-hand ``attempts`` is the old value, so the new
# count is attempts + 1 and the wait is (attempts + 1) + 1 minutes.
INCREMENT_FAILURE_SQL = """
    UPDATE retry_callbacks
    SET attempts = attempts + 1,
        next_retry_at = $2::timestamptz + make_interval(mins => (attempts + 2) * $5::int),
        last_attempt = $2,
        last_error = $3,
        last_status_code = $4,
        updated_at = $2
    WHERE request_id = $1 AND status = 'PENDING'
    RETURNING *
"""

RECORD_SUCCESS_SQL = """
    UPDATE retry_callbacks
    SET status = 'SUCCESS',
        success_at = $2,
        next_retry_at = NULL,
        last_error = NULL,
        last_attempt = $2,
        last_status_code = COALESCE($3, last_status_code),
        attempts = GREATEST(attempts, COALESCE($4, attempts)),
        updated_at = $2
    WHERE request_id = $1 AND status = 'PENDING'
    RETURNING *
"""


class PostgresRetryLedger(IRetryLedger):

    def __init__(
        self,
        db: Database,
        clock: Clock = utcnow,
        base_minutes: int = CallbackSettings.RETRY_BASE_MINUTES,
    ):
        self.db = db
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
        now = self._clock()

        if snapshot is not None:
            if not callback_url:
                raise ValueError("callback_url is required to open a retry entry")
            row = await self.db.fetch_one(
                UPSERT_FAILURE_SQL,
                request_id,
                reference,
                callback_url,
                now,
                error,
                status_code,
                snapshot.model_dump_json(),
                self._base_minutes,
            )
        else:
            row = await self.db.fetch_one(
                INCREMENT_FAILURE_SQL,
                request_id,
                now,
                error,
                status_code,
                self._base_minutes,
            )

        return _row_to_entry(row) if row else None

    async def record_success(
        self,
        request_id: str,
        *,
        status_code: Optional[int] = None,
        attempt_number: Optional[int] = None,
    ) -> Optional[RetryCallbackEntry]:
        row = await self.db.fetch_one(
            RECORD_SUCCESS_SQL,
            request_id,
            self._clock(),
            status_code,
            attempt_number,
        )
        return _row_to_entry(row) if row else None

    async def due_entries(self, limit: int = CallbackSettings.BATCH_SIZE) -> List[RetryCallbackEntry]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM retry_callbacks
            WHERE status = 'PENDING'
              AND next_retry_at <= $1
            ORDER BY next_retry_at ASC
            LIMIT $2
            """,
            self._clock(),
            limit,
        )
        return [_row_to_entry(row) for row in rows]

    async def get(self, request_id: str) -> Optional[RetryCallbackEntry]:
        row = await self.db.fetch_one(
            "SELECT * FROM retry_callbacks WHERE request_id = $1",
            request_id,
        )
        return _row_to_entry(row) if row else None

    async def stats(self) -> Dict[str, int]:
        rows = await self.db.fetch_all(
            "SELECT status, COUNT(*) AS count FROM retry_callbacks GROUP BY status"
        )
        counts = {row["status"]: row["count"] for row in rows}
        return {
            "total": sum(counts.values()),
            "pending": counts.get("PENDING", 0),
            "success": counts.get("SUCCESS", 0),
        }


# =============================================================================
# EVENT LOG
# =============================================================================

class PostgresEventStore(IEventStore):

    def __init__(self, db: Database):
        self.db = db

    async def append(self, record: EventRecord) -> None:
        await self.db.execute(
            """
            INSERT INTO system_events
            (id, request_id, timestamp, event_type, payload, severity)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            """,
            record.id,
            record.request_id,
            record.timestamp,
            record.event_type,
            json.dumps(record.payload, default=str),
            record.severity,
        )

    async def recent(self, limit: int = 50, request_id: Optional[str] = None) -> List[EventRecord]:
        if request_id:
            rows = await self.db.fetch_all(
                """
                SELECT * FROM system_events
                WHERE request_id = $1
                ORDER BY timestamp DESC
                LIMIT $2
                """,
                request_id,
                limit,
            )
        else:
            rows = await self.db.fetch_all(
                "SELECT * FROM system_events ORDER BY timestamp DESC LIMIT $1",
                limit,
            )

        events = []
        for row in rows:
            data = dict(row)
            data["id"] = str(data["id"])
            data["payload"] = _loads(data["payload"]) or {}
            events.append(EventRecord(**data))
        return events
