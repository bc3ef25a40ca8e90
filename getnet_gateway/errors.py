"""Exceptions raised at the gateway's seams. Delivery failures are not here:
they are returned as DeliveryResult values."""

from typing import Optional


class GatewayError(Exception):
    pass


class PaymentNotFoundError(GatewayError):
    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Payment not found: {request_id}")


class ProviderError(GatewayError):
    """The Getnet API was unreachable or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[dict] = None):
        self.status_code = status_code
        self.body = body or {}
        super().__init__(message)


class InvalidSignatureError(GatewayError):
    pass


class PaymentValidationError(GatewayError):
    def __init__(self, message: str, missing_fields: Optional[list[str]] = None, provided: Optional[int] = None):
        self.missing_fields = missing_fields or []
        self.provided = provided
        super().__init__(message)
