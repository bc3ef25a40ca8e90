# services/getnet_client.py
# ============================================================================
# GETNET GATEWAY - PROVIDER CLIENT
# ============================================================================
# Thin httpx wrapper around the two Getnet endpoints the gateway uses:
#   POST /api/session              create a hosted checkout session
#   POST /api/session/{requestId}  query the current status of a session
#
# Every call carries freshly generated credentials. Failures surface as
# ProviderError; callers decide whether that aborts anything.
# ============================================================================

from typing import Any, Dict, Optional

import httpx
import structlog

from getnet_gateway.config import GatewayConfig
from getnet_gateway.errors import ProviderError
from getnet_gateway.schemas import ProviderStatus
from getnet_gateway.services.auth import generate_auth

logger = structlog.get_logger().bind(component="getnet_client")


class SessionStatus(ProviderStatus):
    """Status block plus the raw provider response it came from."""
    raw: Dict[str, Any] = {}


class GetnetClient:

    def __init__(self, config: GatewayConfig, http: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = http is None
        self._http = http or httpx.AsyncClient(
            base_url=config.getnet_base_url,
            timeout=config.provider_timeout_seconds,
        )

    async def close(self):
        if self._owns_client:
            await self._http.aclose()

    def _auth(self) -> Dict[str, str]:
        return generate_auth(self.config.getnet_login, self.config.getnet_secret_key).model_dump()

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.config.getnet_base_url.rstrip('/')}{path}"
        try:
            response = await self._http.post(url, json=body)
        except httpx.TimeoutException:
            logger.error("provider_timeout", path=path)
            raise ProviderError(f"Timeout calling Getnet {path}")
        except httpx.HTTPError as e:
            logger.error("provider_unreachable", path=path, error=str(e))
            raise ProviderError(f"Error connecting to Getnet: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            message = (data.get("status") or {}).get("message") or f"HTTP {response.status_code}"
            logger.warning("provider_error", path=path, status_code=response.status_code, message=message)
            raise ProviderError(message, status_code=response.status_code, body=data)

        return data

    async def create_session(self, session_request: Dict[str, Any]) -> Dict[str, Any]:
        """Create a checkout session. ``session_request`` is sent as-is
        except for the auth block, which is always regenerated."""
        body = {**session_request, "auth": self._auth()}
        data = await self._post("/api/session", body)

        if not data.get("requestId") or not data.get("processUrl"):
            raise ProviderError("Getnet did not return a checkout session", body=data)

        logger.info("session_created", request_id=str(data["requestId"]))
        return data

    async def query_status(self, request_id: str) -> SessionStatus:
        data = await self._post(f"/api/session/{request_id}", {"auth": self._auth()})

        status_block = data.get("status") or {}
        if not status_block.get("status"):
            raise ProviderError(f"No status in Getnet response for {request_id}", body=data)

        try:
            return SessionStatus(**status_block, raw=data)
        except ValueError as e:
            raise ProviderError(f"Unknown Getnet status {status_block.get('status')!r}", body=data) from e
