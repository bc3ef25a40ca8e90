# schemas/delivery.py
# ============================================================================
# GETNET GATEWAY - CALLBACK DELIVERY SCHEMAS
# ============================================================================
# DeliveryResult is a tagged union: callers branch on ``kind`` (or on the
# shared ``success`` flag) instead of probing optional fields.
# ============================================================================

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from getnet_gateway.schemas.payments import Buyer, PaymentStatus


class CallbackPayload(BaseModel):
    """Body POSTed to a subscriber. Field names are the wire names."""
    model_config = ConfigDict(use_enum_values=True)

    secretHash: str
    requestId: str
    reference: Optional[str] = None
    status: PaymentStatus
    amount: float
    currency: str
    buyer: Optional[Dict[str, Any]] = None
    timestamp: str
    isRetry: bool = False
    attemptNumber: int = Field(default=1, ge=1)


class CallbackRequest(BaseModel):
    """Everything the dispatcher needs besides the secret and the clock."""
    callback_url: str
    request_id: str
    reference: Optional[str] = None
    status: PaymentStatus
    amount: float
    currency: str
    buyer: Optional[Buyer] = None
    is_retry: bool = False


class Delivered(BaseModel):
    kind: Literal["delivered"] = "delivered"
    status_code: int
    error: None = None

    @property
    def success(self) -> bool:
        return True


class HttpFailure(BaseModel):
    kind: Literal["http_failure"] = "http_failure"
    status_code: int
    error: str

    @property
    def success(self) -> bool:
        return False


class TransportFailure(BaseModel):
    kind: Literal["transport_failure"] = "transport_failure"
    status_code: int = 0
    error: str

    @property
    def success(self) -> bool:
        return False


class TimedOut(BaseModel):
    kind: Literal["timeout"] = "timeout"
    status_code: int = 0
    error: str = "Timeout"

    @property
    def success(self) -> bool:
        return False


DeliveryResult = Annotated[
    Union[Delivered, HttpFailure, TransportFailure, TimedOut],
    Field(discriminator="kind"),
]
