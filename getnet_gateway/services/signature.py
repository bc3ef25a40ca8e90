"""Authenticity check for inbound Getnet notifications.

Getnet signs with SHA-1 over ``requestId + status + date + secretKey``.
"""

import hashlib
import hmac
from typing import Optional, Union

from pydantic import BaseModel

from getnet_gateway.schemas import ProviderStatus
from getnet_gateway.timeutil import iso_utc, utcnow


class SignatureCheck(BaseModel):
    is_valid: bool
    calculated_signature: Optional[str] = None
    provided_signature: Optional[str] = None
    string_used: Optional[str] = None
    error: Optional[str] = None


def compute_signature(request_id: Union[str, int], status: str, date: str, secret_key: str) -> str:
    return hashlib.sha1(f"{request_id}{status}{date}{secret_key}".encode("utf-8")).hexdigest()


def validate_signature(
    request_id: Union[str, int, None],
    status: Optional[ProviderStatus],
    signature: Optional[str],
    secret_key: str,
    fallback_date: str = "",
) -> SignatureCheck:
    if not request_id or not signature or not secret_key:
        return SignatureCheck(is_valid=False, error="Missing required parameters")

    status_str = status.status.value if status else ""
    date_str = (status.date if status else None) or fallback_date or iso_utc(utcnow())

    calculated = compute_signature(request_id, status_str, date_str, secret_key)

    return SignatureCheck(
        is_valid=hmac.compare_digest(calculated.encode("utf-8"), signature.encode("utf-8")),
        calculated_signature=calculated,
        provided_signature=signature,
        string_used=f"{request_id}{status_str}{date_str}[SECRET_KEY]",
    )
