"""Getnet (PlaceToPay) request credentials.

tranKey = Base64(SHA-256(nonce + seed + secretKey)); the nonce itself travels
Base64-encoded and the seed is the current ISO-8601 UTC time.
"""

import base64
import hashlib
import secrets
import string
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from getnet_gateway.timeutil import iso_utc, utcnow

_NONCE_ALPHABET = string.ascii_lowercase + string.digits


class GetnetAuth(BaseModel):
    login: str
    tranKey: str
    nonce: str
    seed: str


def generate_nonce(length: int = 22) -> str:
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


def generate_auth(
    login: str,
    secret_key: str,
    now: Optional[datetime] = None,
    nonce: Optional[str] = None,
) -> GetnetAuth:
    raw_nonce = nonce or generate_nonce()
    seed = iso_utc(now or utcnow())

    digest = hashlib.sha256((raw_nonce + seed + secret_key).encode("utf-8")).digest()

    return GetnetAuth(
        login=login,
        tranKey=base64.b64encode(digest).decode("ascii"),
        nonce=base64.b64encode(raw_nonce.encode("utf-8")).decode("ascii"),
        seed=seed,
    )
