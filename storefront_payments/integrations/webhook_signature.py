"""
Gateway webhook signature verification.

The gateway signs each notification with HMAC-SHA256 over the raw request
body, keyed with the shared webhook secret, and sends the hex digest in
``X-Bonum-Signature``.
"""
import hashlib
import hmac
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Bonum-Signature"


class WebhookSignatureError(Exception):
    """Raised when a webhook is unsigned or its signature does not match."""

    pass


def sign_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of ``payload``."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> None:
    """
    Verify a webhook signature.

    Args:
        payload: Raw request body as bytes
        signature: Value of the signature header, if any
        secret: Shared webhook secret

    Raises:
        WebhookSignatureError: If the signature is missing or invalid
    """
    if not signature:
        logger.warning("webhook_signature_missing")
        raise WebhookSignatureError("Missing webhook signature")

    expected = sign_payload(payload, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        logger.warning("webhook_signature_invalid", payload_size=len(payload))
        raise WebhookSignatureError("Invalid webhook signature")
