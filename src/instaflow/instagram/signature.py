"""Webhook signature validation (X-Hub-Signature-256).

Runs over the exact raw request bytes, before any JSON parsing.
"""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


class SignatureVerificationError(Exception):
    """Raised when HMAC signature verification fails."""

    pass


def verify_signature(payload_bytes: bytes, signature_header: str | None, app_secret: str) -> None:
    """Verify platform webhook signature (HMAC-SHA256).

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: App secret for HMAC verification.

    Raises:
        SignatureVerificationError: If secret is unset, or signature is
            missing, malformed or does not match.
    """
    if not app_secret:
        raise SignatureVerificationError("app secret not configured")

    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith(SIGNATURE_PREFIX):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[len(SIGNATURE_PREFIX):]

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig, expected_sig):
        raise SignatureVerificationError("signature mismatch")


def validate(raw_body: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Boolean form of verify_signature."""
    try:
        verify_signature(raw_body, signature_header, app_secret)
    except SignatureVerificationError:
        return False
    return True
