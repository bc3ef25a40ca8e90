# services/__init__.py
# ============================================================================
# GETNET GATEWAY - SERVICES MODULE
# ============================================================================
# Provider client, callback delivery, notification handling and the black box
# ============================================================================

from getnet_gateway.services.auth import GetnetAuth, generate_auth
from getnet_gateway.services.dispatcher import CallbackDispatcher, generate_callback_secret
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.services.getnet_client import GetnetClient, SessionStatus
from getnet_gateway.services.notifications import NotificationService, ProviderNotification
from getnet_gateway.services.orchestrator import CallbackOrchestrator
from getnet_gateway.services.payments import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    PaymentService,
)
from getnet_gateway.services.signature import SignatureCheck, validate_signature

__all__ = [
    # Getnet
    "GetnetAuth",
    "generate_auth",
    "GetnetClient",
    "SessionStatus",
    "SignatureCheck",
    "validate_signature",
    # Callbacks
    "CallbackDispatcher",
    "CallbackOrchestrator",
    "generate_callback_secret",
    # Payments
    "CreatePaymentRequest",
    "CreatePaymentResponse",
    "NotificationService",
    "PaymentService",
    "ProviderNotification",
    # Black box
    "EventLog",
]
