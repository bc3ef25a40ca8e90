"""
Inbound Getnet notifications
============================
Verifies the signature, records the raw notification on the payment and,
when the reported status differs from the stored one, applies it and
notifies the subscriber.

Getnet is treated as the source of truth: a terminal status may be
overwritten, but doing so is logged as a warning.
"""

from typing import Any, Dict, Optional, Union

import structlog
from pydantic import BaseModel

from getnet_gateway.config import GatewayConfig
from getnet_gateway.errors import InvalidSignatureError, PaymentNotFoundError
from getnet_gateway.schemas import NotificationRecord, ProviderStatus, StatusTransition
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.services.orchestrator import CallbackOrchestrator
from getnet_gateway.services.signature import validate_signature
from getnet_gateway.storage import IPaymentRepository

logger = structlog.get_logger().bind(component="notifications")


class ProviderNotification(BaseModel):
    """Body Getnet posts to the notification URL."""
    requestId: Union[str, int]
    reference: Optional[str] = None
    signature: Optional[str] = None
    status: Optional[ProviderStatus] = None


class NotificationService:

    def __init__(
        self,
        config: GatewayConfig,
        payments: IPaymentRepository,
        orchestrator: CallbackOrchestrator,
        events: EventLog,
    ):
        self.config = config
        self.payments = payments
        self.orchestrator = orchestrator
        self.events = events

    async def handle(
        self,
        notification: ProviderNotification,
        raw: Optional[Dict[str, Any]] = None,
    ) -> Optional[StatusTransition]:
        """Process one notification. Returns the transition if the status changed."""
        request_id = str(notification.requestId)

        check = validate_signature(
            request_id,
            notification.status,
            notification.signature,
            self.config.getnet_secret_key,
        )
        if not check.is_valid:
            await self.events.log(
                "NOTIFICATION_INVALID_SIGNATURE",
                {
                    "provided_signature": check.provided_signature,
                    "string_used": check.string_used,
                    "error": check.error,
                },
                request_id=request_id,
                severity="WARN",
            )
            raise InvalidSignatureError(check.error or "Invalid signature")

        payment = await self.payments.get(request_id)
        if not payment:
            await self.events.log(
                "ERROR",
                {"context": "notification", "error": "payment_not_found"},
                request_id=request_id,
                severity="WARN",
            )
            raise PaymentNotFoundError(request_id)

        data = raw if raw is not None else notification.model_dump(mode="json")
        await self.payments.append_notification(request_id, NotificationRecord(data=data))

        new_status = notification.status.status if notification.status else None
        await self.events.log(
            "NOTIFICATION_RECEIVED",
            {
                "reference": payment.reference,
                "current_status": payment.status.value,
                "reported_status": new_status.value if new_status else None,
            },
            request_id=request_id,
        )

        if new_status is None or new_status == payment.status:
            return None

        old_status = payment.status
        if old_status.is_terminal:
            logger.warning(
                "terminal_status_overwritten",
                request_id=request_id,
                old_status=old_status.value,
                new_status=new_status.value,
            )

        updated = await self.payments.update_status(
            request_id,
            new_status,
            provider_response=data,
            expected_status=old_status,
        )
        if updated is None:
            # a concurrent reconciliation moved the status first
            logger.info("notification_status_already_changed", request_id=request_id, reported_status=new_status.value)
            return None

        delivered = await self.orchestrator.notify_status_change(request_id, old_status, new_status)

        return StatusTransition(
            request_id=request_id,
            reference=payment.reference,
            old_status=old_status,
            new_status=new_status,
            provider_date=notification.status.date,
            callback_notified=delivered,
        )
