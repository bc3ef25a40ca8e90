"""
Callback Dispatcher
===================
One delivery attempt of a payment status notification to a subscriber URL.

- The body carries ``secretHash = sha1(server_secret + callback_url)`` so the
  subscriber can verify the sender.
- A hard timeout (10 s by default) cancels the request; that outcome is
  ``TimedOut``, distinct from transport errors and HTTP failures.
- Only 200 and 201 count as delivered.
- Never raises for a failed delivery and never touches any store.
"""

import asyncio
import hashlib
from typing import Optional

import httpx
import structlog

from getnet_gateway.config import CallbackSettings
from getnet_gateway.schemas import (
    CallbackPayload,
    CallbackRequest,
    Delivered,
    DeliveryResult,
    HttpFailure,
    TimedOut,
    TransportFailure,
)
from getnet_gateway.timeutil import Clock, iso_utc, utcnow

logger = structlog.get_logger().bind(component="dispatcher")


def generate_callback_secret(callback_url: str, secret: str = "") -> str:
    return hashlib.sha1((secret + callback_url).encode("utf-8")).hexdigest()


def _extract_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if message:
            return str(message)
    return f"HTTP {response.status_code}"


class CallbackDispatcher:

    def __init__(
        self,
        http: httpx.AsyncClient,
        server_secret: str = "",
        timeout_seconds: float = CallbackSettings.TIMEOUT_SECONDS,
        valid_status_codes: tuple[int, ...] = CallbackSettings.VALID_STATUS_CODES,
        clock: Clock = utcnow,
    ):
        self._http = http
        self._server_secret = server_secret
        self.timeout_seconds = timeout_seconds
        self.valid_status_codes = valid_status_codes
        self._clock = clock

    def build_payload(self, request: CallbackRequest, attempt_number: int) -> CallbackPayload:
        return CallbackPayload(
            secretHash=generate_callback_secret(request.callback_url, self._server_secret),
            requestId=request.request_id,
            reference=request.reference,
            status=request.status,
            amount=request.amount,
            currency=request.currency,
            buyer=request.buyer.model_dump(exclude_none=True) if request.buyer else None,
            timestamp=iso_utc(self._clock()),
            isRetry=request.is_retry,
            attemptNumber=attempt_number,
        )

    async def deliver(
        self,
        url: str,
        payload: CallbackPayload,
        attempt_number: Optional[int] = None,
    ) -> DeliveryResult:
        attempt = attempt_number or payload.attemptNumber
        headers = {
            "Content-Type": "application/json",
            "X-Getnet-RequestId": str(payload.requestId),
            "X-Attempt-Number": str(attempt),
        }

        try:
            async with asyncio.timeout(self.timeout_seconds):
                response = await self._http.post(
                    url,
                    content=payload.model_dump_json(),
                    headers=headers,
                    timeout=self.timeout_seconds,
                )
        except (TimeoutError, httpx.TimeoutException):
            logger.warning("callback_timeout", url=url, request_id=payload.requestId, attempt=attempt)
            return TimedOut()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("callback_transport_error", url=url, request_id=payload.requestId, error=str(e))
            return TransportFailure(error=str(e) or type(e).__name__)

        if response.status_code in self.valid_status_codes:
            return Delivered(status_code=response.status_code)

        return HttpFailure(status_code=response.status_code, error=_extract_error(response))

    async def send(self, request: CallbackRequest, attempt_number: int = 1) -> DeliveryResult:
        """Build the payload for ``request`` and deliver it."""
        payload = self.build_payload(request, attempt_number)
        return await self.deliver(request.callback_url, payload, attempt_number)
