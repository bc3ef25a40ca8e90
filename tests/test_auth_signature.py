import base64
import hashlib
from datetime import datetime, timezone

from getnet_gateway.schemas import PaymentStatus, ProviderStatus
from getnet_gateway.services.auth import generate_auth, generate_nonce
from getnet_gateway.services.signature import compute_signature, validate_signature

SECRET = "test-secret"


# ============================================================================
# AUTH
# ============================================================================

def test_nonce_is_alphanumeric():
    nonce = generate_nonce()
    assert len(nonce) == 22
    assert nonce.isalnum()
    assert generate_nonce() != nonce


def test_tran_key_derivation():
    now = datetime(2025, 1, 15, 12, 0, 0, 123000, tzinfo=timezone.utc)

    auth = generate_auth("login", SECRET, now=now, nonce="abc123")

    assert auth.login == "login"
    assert auth.seed == "2025-01-15T12:00:00.123Z"
    assert base64.b64decode(auth.nonce).decode() == "abc123"
    expected = base64.b64encode(
        hashlib.sha256(("abc123" + auth.seed + SECRET).encode()).digest()
    ).decode()
    assert auth.tranKey == expected


# ============================================================================
# SIGNATURE
# ============================================================================

def _status(date="2025-01-15T09:00:00-03:00"):
    return ProviderStatus(status=PaymentStatus.APPROVED, date=date)


def test_valid_signature():
    signature = hashlib.sha1(f"1001APPROVED2025-01-15T09:00:00-03:00{SECRET}".encode()).hexdigest()

    check = validate_signature("1001", _status(), signature, SECRET)

    assert check.is_valid is True
    assert check.calculated_signature == signature
    assert SECRET not in check.string_used
    assert check.string_used.endswith("[SECRET_KEY]")


def test_tampered_status_is_rejected():
    signature = compute_signature("1001", "REJECTED", "2025-01-15T09:00:00-03:00", SECRET)

    assert validate_signature("1001", _status(), signature, SECRET).is_valid is False


def test_missing_parameters():
    check = validate_signature("1001", _status(), None, SECRET)

    assert check.is_valid is False
    assert check.error == "Missing required parameters"
    assert validate_signature("", _status(), "abc", SECRET).is_valid is False
    assert validate_signature("1001", _status(), "abc", "").is_valid is False


def test_fallback_date_used_when_status_has_none():
    signature = compute_signature(1001, "APPROVED", "2025-01-01", SECRET)

    check = validate_signature(1001, _status(date=None), signature, SECRET, fallback_date="2025-01-01")

    assert check.is_valid is True


def test_non_ascii_signature_does_not_raise():
    assert validate_signature("1001", _status(), "ñandú", SECRET).is_valid is False
