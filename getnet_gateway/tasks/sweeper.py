"""
Retry Sweeper
=============
Replays delivery obligations whose backoff has elapsed.

- At most ``batch_size`` entries per sweep, most overdue first
- Strictly sequential, with a short pause between attempts
- One attempt per entry per sweep; a failure is simply rescheduled
- Entries beyond the batch cap are left untouched for the next sweep
"""

import asyncio
from typing import Optional

import structlog

from getnet_gateway.config import CallbackSettings
from getnet_gateway.schemas import ItemError, SweepSummary
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.services.orchestrator import CallbackOrchestrator
from getnet_gateway.storage import IRetryLedger

logger = structlog.get_logger().bind(component="retry_sweeper")


class RetrySweeper:

    def __init__(
        self,
        ledger: IRetryLedger,
        orchestrator: CallbackOrchestrator,
        events: EventLog,
        batch_size: int = CallbackSettings.BATCH_SIZE,
        delay_seconds: float = 0.5,
    ):
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.events = events
        self.batch_size = batch_size
        self.delay_seconds = delay_seconds

    async def run(self, limit: Optional[int] = None) -> SweepSummary:
        """
        Sweep due ledger entries once.

        A failure to list entries propagates; a failure on one entry is
        counted and the sweep moves on.
        """
        entries = await self.ledger.due_entries(limit or self.batch_size)
        summary = SweepSummary()

        if not entries:
            logger.info("sweep_nothing_due")
            return summary

        logger.info("sweep_started", due=len(entries))

        for index, entry in enumerate(entries):
            if index and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)

            summary.processed += 1
            try:
                delivered = await self.orchestrator.retry_one(entry)
            except Exception as e:
                logger.error("sweep_entry_error", request_id=entry.request_id, error=str(e))
                summary.failed += 1
                summary.errors.append(ItemError(request_id=entry.request_id, error=str(e)))
                continue

            if delivered:
                summary.succeeded += 1
            else:
                summary.failed += 1

        await self.events.log(
            "CRON_CALLBACKS",
            {
                "processed": summary.processed,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
            },
        )
        logger.info(
            "sweep_finished",
            processed=summary.processed,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return summary
