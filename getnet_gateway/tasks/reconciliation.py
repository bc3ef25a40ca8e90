"""
Reconciliation Scheduler
========================
Resyncs local payment status with Getnet for payments that are still open.

One batch (triggered by the cron endpoint) runs two phases in order:

1. Reconciliation: every CREATED/PENDING payment created within the lookback
   window is queried upstream, newest first, one at a time. A changed status
   is stored and the subscriber is notified, whatever the new status is.
2. Callback retries: the RetrySweeper replays due ledger entries.

Per-payment failures are collected in the summary and never stop the batch.
A failure to list candidates aborts the batch.
"""

import asyncio
import time
from datetime import timedelta
from typing import Optional

import structlog

from getnet_gateway.config import ReconciliationSettings
from getnet_gateway.schemas import (
    NON_TERMINAL_STATUSES,
    BatchSummary,
    ItemError,
    Payment,
    ReconciliationSummary,
    StatusTransition,
)
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.services.getnet_client import GetnetClient
from getnet_gateway.services.orchestrator import CallbackOrchestrator
from getnet_gateway.storage import IPaymentRepository
from getnet_gateway.tasks.sweeper import RetrySweeper
from getnet_gateway.timeutil import Clock, utcnow

logger = structlog.get_logger().bind(component="reconciliation")


class ReconciliationScheduler:

    def __init__(
        self,
        payments: IPaymentRepository,
        client: GetnetClient,
        orchestrator: CallbackOrchestrator,
        sweeper: RetrySweeper,
        events: EventLog,
        clock: Clock = utcnow,
        delay_seconds: float = ReconciliationSettings.REQUEST_DELAY_SECONDS,
        max_lookback_days: int = ReconciliationSettings.MAX_LOOKBACK_DAYS,
        default_lookback_days: int = ReconciliationSettings.DEFAULT_LOOKBACK_DAYS,
    ):
        self.payments = payments
        self.client = client
        self.orchestrator = orchestrator
        self.sweeper = sweeper
        self.events = events
        self._clock = clock
        self.delay_seconds = delay_seconds
        self.max_lookback_days = max_lookback_days
        self.default_lookback_days = default_lookback_days

    def clamp_days(self, days_back: Optional[int]) -> int:
        if days_back is None:
            days_back = self.default_lookback_days
        return max(1, min(days_back, self.max_lookback_days))

    # =========================================================================
    # BATCH
    # =========================================================================

    async def run(
        self,
        days_back: Optional[int] = None,
        skip_reconciliation: bool = False,
        skip_callback_retries: bool = False,
    ) -> BatchSummary:
        started = time.monotonic()
        days = self.clamp_days(days_back)
        summary = BatchSummary()

        await self.events.log(
            "CRON_STARTED",
            {
                "days_back": days,
                "skip_reconciliation": skip_reconciliation,
                "skip_callback_retries": skip_callback_retries,
            },
        )

        try:
            if not skip_reconciliation:
                summary.reconciliation = await self.reconcile(days)
            if not skip_callback_retries:
                summary.callbacks = await self.sweeper.run()
        except Exception as e:
            summary.success = False
            summary.error = str(e)
            summary.duration = round(time.monotonic() - started, 3)
            logger.error("batch_failed", error=str(e), duration=summary.duration)
            await self.events.log(
                "CRON_ERROR",
                {"error": str(e), "duration": summary.duration},
                severity="ERROR",
            )
            return summary

        summary.duration = round(time.monotonic() - started, 3)
        await self.events.log(
            "CRON_COMPLETED",
            {
                "duration": summary.duration,
                "checked": summary.reconciliation.checked if summary.reconciliation else 0,
                "updated": summary.reconciliation.updated if summary.reconciliation else 0,
                "callbacks_processed": summary.callbacks.processed if summary.callbacks else 0,
            },
        )
        return summary

    # =========================================================================
    # RECONCILIATION PHASE
    # =========================================================================

    async def reconcile(self, days_back: Optional[int] = None) -> ReconciliationSummary:
        days = self.clamp_days(days_back)
        since = self._clock() - timedelta(days=days)

        candidates = await self.payments.list_for_reconciliation(NON_TERMINAL_STATUSES, since)
        summary = ReconciliationSummary(days_back=days)

        logger.info("reconciliation_started", days_back=days, candidates=len(candidates))

        for index, payment in enumerate(candidates):
            if index and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)

            summary.checked += 1
            try:
                transition = await self.reconcile_payment(payment)
            except Exception as e:
                logger.warning("reconciliation_item_failed", request_id=payment.request_id, error=str(e))
                summary.errors.append(ItemError(request_id=payment.request_id, error=str(e)))
                continue

            if transition:
                summary.updated += 1
                summary.transitions.append(transition)

        await self.events.log(
            "CRON_RECONCILIATION",
            {
                "days_back": days,
                "checked": summary.checked,
                "updated": summary.updated,
                "errors": len(summary.errors),
            },
        )
        logger.info(
            "reconciliation_finished",
            checked=summary.checked,
            updated=summary.updated,
            errors=len(summary.errors),
        )
        return summary

    async def reconcile_payment(self, payment: Payment, source: str = "cron") -> Optional[StatusTransition]:
        """
        Query Getnet for one payment and apply the result.

        Returns the transition when the status changed, None otherwise.
        Provider failures raise ProviderError.
        """
        upstream = await self.client.query_status(payment.request_id)

        if upstream.status == payment.status:
            return None

        old_status = payment.status
        updated = await self.payments.update_status(
            payment.request_id,
            upstream.status,
            provider_response=upstream.raw or None,
            expected_status=old_status,
        )
        if updated is None:
            # a notification applied a status since the listing
            logger.info(
                "reconciliation_status_already_applied",
                request_id=payment.request_id,
                listed_status=old_status.value,
                upstream_status=upstream.status.value,
            )
            return None

        await self.events.log(
            "CRON_PAYMENT_UPDATED",
            {
                "reference": payment.reference,
                "old_status": old_status.value,
                "new_status": upstream.status.value,
                "provider_date": upstream.date,
                "reason": upstream.reason,
                "source": source,
            },
            request_id=payment.request_id,
        )

        delivered = await self.orchestrator.notify_status_change(
            payment.request_id,
            old_status,
            upstream.status,
        )

        return StatusTransition(
            request_id=payment.request_id,
            reference=payment.reference,
            old_status=old_status,
            new_status=upstream.status,
            provider_date=upstream.date,
            callback_notified=delivered,
        )
