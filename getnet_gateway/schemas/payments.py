# schemas/payments.py
# ============================================================================
# GETNET GATEWAY - PAYMENT & LEDGER SCHEMAS
# ============================================================================

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from getnet_gateway.timeutil import utcnow


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class PaymentStatus(str, Enum):
    CREATED = "CREATED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"
    CHARGEBACK = "CHARGEBACK"

    @property
    def is_terminal(self) -> bool:
        return self not in NON_TERMINAL_STATUSES


NON_TERMINAL_STATUSES = frozenset({PaymentStatus.CREATED, PaymentStatus.PENDING})


class RetryStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"


# ============================================================================
# SECTION 2: PAYMENT
# ============================================================================

class Buyer(BaseModel):
    name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[str] = None
    document: Optional[str] = None
    mobile: Optional[str] = None


class NotificationRecord(BaseModel):
    """One raw notification as received from the provider."""
    received_at: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)


class Payment(BaseModel):
    """A checkout session and its locally known state."""
    request_id: str
    reference: str = Field(max_length=32)
    amount: float
    currency: str = "CLP"
    status: PaymentStatus = PaymentStatus.CREATED
    buyer: Buyer = Field(default_factory=Buyer)

    external_url_callback: Optional[str] = None
    callback_executed: bool = False

    process_url: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None
    last_status_update: Optional[datetime] = None
    notifications: List[NotificationRecord] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def has_callback(self) -> bool:
        return bool(self.external_url_callback)

    def snapshot(self) -> "PaymentSnapshot":
        return PaymentSnapshot(
            amount=self.amount,
            currency=self.currency,
            payment_status=self.status,
            buyer=self.buyer,
        )


class ProviderStatus(BaseModel):
    """The ``status`` block of a Getnet session or notification."""
    status: PaymentStatus
    reason: Optional[str] = None
    message: Optional[str] = None
    date: Optional[str] = None


class StatusTransition(BaseModel):
    request_id: str
    reference: Optional[str] = None
    old_status: PaymentStatus
    new_status: PaymentStatus
    provider_date: Optional[str] = None
    callback_notified: bool = False


# ============================================================================
# SECTION 3: RETRY LEDGER
# ============================================================================

class PaymentSnapshot(BaseModel):
    """Payment fields frozen when a delivery obligation is opened."""
    amount: float
    currency: str
    payment_status: PaymentStatus
    buyer: Buyer = Field(default_factory=Buyer)


class RetryCallbackEntry(BaseModel):
    """A pending or resolved outbound delivery obligation, one per payment."""
    request_id: str
    reference: Optional[str] = None
    callback_url: str
    status: RetryStatus = RetryStatus.PENDING
    attempts: int = Field(default=1, ge=0)
    next_retry_at: Optional[datetime] = None
    last_attempt: Optional[datetime] = None
    last_error: Optional[str] = None
    last_status_code: Optional[int] = None
    success_at: Optional[datetime] = None
    payment_data: PaymentSnapshot
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def is_pending(self) -> bool:
        return self.status == RetryStatus.PENDING
