# services/payments.py
# ============================================================================
# GETNET GATEWAY - CHECKOUT SESSION CREATION
# ============================================================================
# Validates a merchant's payment request, opens a hosted checkout session at
# Getnet and persists the payment in CREATED state together with the
# merchant's optional callback URL.
# ============================================================================

from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from getnet_gateway.config import GatewayConfig
from getnet_gateway.errors import PaymentValidationError
from getnet_gateway.schemas import Buyer, Payment, PaymentStatus
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.services.getnet_client import GetnetClient
from getnet_gateway.storage import IPaymentRepository
from getnet_gateway.timeutil import Clock, iso_utc, utcnow

logger = structlog.get_logger().bind(component="payments")

MAX_REFERENCE_LENGTH = 32


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class CreatePaymentRequest(BaseModel):
    """Body of POST /api/create-payment"""
    model_config = ConfigDict(populate_by_name=True)

    amount: Optional[float] = None
    buyer: Optional[Buyer] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    currency: Optional[str] = None
    return_url: Optional[str] = Field(default=None, alias="returnUrl")
    notification_url: Optional[str] = Field(default=None, alias="notificationUrl")
    external_url_callback: Optional[str] = Field(default=None, alias="externalURLCallback")


class CreatePaymentResponse(BaseModel):
    success: bool = True
    requestId: str
    processUrl: str
    reference: str
    expiresAt: str


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def validate_payment_request(request: CreatePaymentRequest) -> List[str]:
    """Return the names of missing required fields (empty when valid)."""
    missing = []
    if not request.amount:
        missing.append("amount")
    if not request.buyer or not request.buyer.email:
        missing.append("buyer.email")
    if not request.return_url:
        missing.append("returnUrl")
    return missing


def validate_reference(reference: Optional[str]) -> bool:
    # reference is optional; one is generated when absent
    if not reference:
        return True
    return 0 < len(reference) <= MAX_REFERENCE_LENGTH


def generate_reference(custom_reference: Optional[str] = None, now=None) -> str:
    if custom_reference:
        return custom_reference
    moment = now or utcnow()
    return f"ORDER-{int(moment.timestamp() * 1000)}"


def build_session_request(
    config: GatewayConfig,
    request: CreatePaymentRequest,
    reference: str,
    now,
    ip_address: str = "127.0.0.1",
    user_agent: str = "Unknown",
) -> Dict[str, Any]:
    """Session body for POST /api/session, without the auth block."""
    currency = request.currency or config.default_currency
    buyer = request.buyer or Buyer()

    return {
        "locale": config.locale,
        "buyer": {
            "name": buyer.name or "Cliente",
            "surname": buyer.surname or "",
            "email": buyer.email,
            "mobile": buyer.mobile or "",
        },
        "payment": {
            "reference": reference,
            "description": request.description or f"Pago de {currency} ${request.amount:g}",
            "amount": {
                "currency": currency,
                "total": request.amount,
            },
        },
        "expiration": iso_utc(now + timedelta(minutes=config.session_expiration_minutes)),
        "returnUrl": request.return_url,
        "notificationUrl": request.notification_url or f"{config.domain.rstrip('/')}/api/notification",
        "ipAddress": ip_address,
        "userAgent": user_agent,
    }


# =============================================================================
# SERVICE
# =============================================================================

class PaymentService:

    def __init__(
        self,
        config: GatewayConfig,
        client: GetnetClient,
        payments: IPaymentRepository,
        events: EventLog,
        clock: Clock = utcnow,
    ):
        self.config = config
        self.client = client
        self.payments = payments
        self.events = events
        self._clock = clock

    async def create_payment(
        self,
        request: CreatePaymentRequest,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> CreatePaymentResponse:
        missing = validate_payment_request(request)
        if missing:
            raise PaymentValidationError("Missing required fields", missing_fields=missing)

        now = self._clock()
        reference = generate_reference(request.reference, now)
        if not validate_reference(reference):
            raise PaymentValidationError(
                f"Reference must be between 1 and {MAX_REFERENCE_LENGTH} characters",
                provided=len(reference),
            )

        session_request = build_session_request(
            self.config,
            request,
            reference,
            now,
            ip_address=ip_address or "127.0.0.1",
            user_agent=user_agent or "Unknown",
        )
        session = await self.client.create_session(session_request)

        request_id = str(session["requestId"])
        payment = Payment(
            request_id=request_id,
            reference=reference,
            amount=request.amount,
            currency=session_request["payment"]["amount"]["currency"],
            status=PaymentStatus.CREATED,
            buyer=request.buyer,
            external_url_callback=request.external_url_callback,
            process_url=session["processUrl"],
            provider_response=session,
            created_at=now,
            updated_at=now,
        )
        await self.payments.create(payment)

        await self.events.log(
            "PAYMENT_CREATED",
            {
                "reference": reference,
                "amount": payment.amount,
                "currency": payment.currency,
                "has_callback": payment.has_callback,
            },
            request_id=request_id,
        )

        return CreatePaymentResponse(
            requestId=request_id,
            processUrl=payment.process_url,
            reference=reference,
            expiresAt=session_request["expiration"],
        )
