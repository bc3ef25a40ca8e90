"""
Callback Orchestrator
=====================
Decides whether a subscriber is owed a notification, drives the dispatcher
and books the outcome in the retry ledger and the payment store.

Holds no state of its own.
"""

from typing import Optional

import structlog

from getnet_gateway.errors import PaymentNotFoundError
from getnet_gateway.schemas import (
    CallbackRequest,
    DeliveryResult,
    Payment,
    PaymentStatus,
    RetryCallbackEntry,
)
from getnet_gateway.services.dispatcher import CallbackDispatcher
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.storage import IPaymentRepository, IRetryLedger

logger = structlog.get_logger().bind(component="orchestrator")


class CallbackOrchestrator:

    def __init__(
        self,
        dispatcher: CallbackDispatcher,
        ledger: IRetryLedger,
        payments: IPaymentRepository,
        events: EventLog,
    ):
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.payments = payments
        self.events = events

    async def notify_if_configured(self, payment: Payment) -> bool:
        """Deliver the payment's current status if a subscriber is configured.

        Returns True when nothing is owed any more (delivered now, delivered
        before, or no subscriber), False when the delivery was queued for
        retry.
        """
        request_id = payment.request_id

        if payment.callback_executed:
            logger.info("callback_already_delivered", request_id=request_id, status=payment.status.value)
            return True

        if not payment.external_url_callback:
            logger.info("callback_not_configured", request_id=request_id)
            await self.payments.mark_callback_executed(request_id)
            return True

        callback_url = payment.external_url_callback
        logger.info("callback_dispatch", request_id=request_id, url=callback_url, status=payment.status.value)

        result = await self.dispatcher.send(
            CallbackRequest(
                callback_url=callback_url,
                request_id=request_id,
                reference=payment.reference,
                status=payment.status,
                amount=payment.amount,
                currency=payment.currency,
                buyer=payment.buyer,
                is_retry=False,
            ),
            attempt_number=1,
        )

        if result.success:
            await self.payments.mark_callback_executed(request_id)
            # an older queued status would overwrite the one just delivered
            superseded = await self.ledger.record_success(request_id, status_code=result.status_code)
            await self.events.log(
                "CALLBACK_SUCCESS",
                {
                    "callback_url": callback_url,
                    "status": payment.status.value,
                    "status_code": result.status_code,
                    "superseded_retry": superseded is not None,
                },
                request_id=request_id,
            )
            return True

        entry = await self.ledger.record_failure(
            request_id,
            error=result.error,
            status_code=result.status_code,
            callback_url=callback_url,
            reference=payment.reference,
            snapshot=payment.snapshot(),
        )
        await self._log_failure("CALLBACK_FAILED", request_id, callback_url, result, entry)
        return False

    async def retry_one(self, entry: RetryCallbackEntry) -> bool:
        """Replay a ledger entry from its snapshot."""
        request_id = entry.request_id
        attempt_number = entry.attempts + 1
        snapshot = entry.payment_data

        logger.info("callback_retry", request_id=request_id, attempt=attempt_number)

        result = await self.dispatcher.send(
            CallbackRequest(
                callback_url=entry.callback_url,
                request_id=request_id,
                reference=entry.reference,
                status=snapshot.payment_status,
                amount=snapshot.amount,
                currency=snapshot.currency,
                buyer=snapshot.buyer,
                is_retry=True,
            ),
            attempt_number=attempt_number,
        )

        if result.success:
            await self.ledger.record_success(
                request_id,
                status_code=result.status_code,
                attempt_number=attempt_number,
            )
            await self.payments.mark_callback_executed(request_id)
            await self.events.log(
                "CRON_CALLBACK_SUCCESS",
                {
                    "callback_url": entry.callback_url,
                    "attempt": attempt_number,
                    "status_code": result.status_code,
                },
                request_id=request_id,
            )
            return True

        updated = await self.ledger.record_failure(
            request_id,
            error=result.error,
            status_code=result.status_code,
        )
        await self._log_failure("CRON_CALLBACK_FAILED", request_id, entry.callback_url, result, updated)
        return False

    async def notify_status_change(
        self,
        request_id: str,
        old_status: PaymentStatus,
        new_status: PaymentStatus,
    ) -> bool:
        """Notify the subscriber of any status change, not only approvals."""
        logger.info(
            "status_changed",
            request_id=request_id,
            old_status=old_status.value,
            new_status=new_status.value,
        )

        payment = await self.payments.get(request_id)
        if not payment:
            raise PaymentNotFoundError(request_id)

        delivered = await self.notify_if_configured(payment)

        await self.events.log(
            "INFO",
            {
                "message": f"Payment status changed: {old_status.value} -> {new_status.value}",
                "old_status": old_status.value,
                "new_status": new_status.value,
                "has_callback": payment.has_callback,
            },
            request_id=request_id,
        )
        return delivered

    async def _log_failure(
        self,
        event_type,
        request_id: str,
        callback_url: str,
        result: DeliveryResult,
        entry: Optional[RetryCallbackEntry],
    ):
        payload = {
            "callback_url": callback_url,
            "status_code": result.status_code,
            "error": result.error,
            "failure_kind": result.kind,
        }
        if entry is not None:
            payload["attempt"] = entry.attempts
            payload["next_retry_at"] = entry.next_retry_at.isoformat() if entry.next_retry_at else None
        await self.events.log(event_type, payload, request_id=request_id, severity="WARN")
