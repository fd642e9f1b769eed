"""
Authentication primitives for inbound Meta webhooks.

Covers the GET subscription handshake and the ``X-Hub-Signature-256``
HMAC-SHA256 check over the raw request body.
"""

import hashlib
import hmac
from typing import Optional

from menu_sync.utils.exceptions import SignatureError
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, app_secret: str) -> str:
    """Return the hex HMAC-SHA256 digest of ``raw_body``."""
    return hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature_header: Optional[str],
                     app_secret: Optional[str]) -> None:
    """
    Verify the webhook signature against the unparsed body.

    Args:
        raw_body: Request body exactly as received
        signature_header: Value of X-Hub-Signature-256
        app_secret: Shared application secret

    Raises:
        SignatureError: on missing secret, missing header, length mismatch or mismatch
    """
    if not app_secret:
        logger.error("Webhook rejected: FACEBOOK_APP_SECRET is not configured")
        raise SignatureError("Webhook signature verification failed", reason="missing_secret")

    if not signature_header:
        logger.warning("Webhook rejected: missing X-Hub-Signature-256 header")
        raise SignatureError("Webhook signature verification failed", reason="missing_header")

    received = signature_header.strip()
    if received.lower().startswith(SIGNATURE_PREFIX):
        received = received[len(SIGNATURE_PREFIX):]

    expected = compute_signature(raw_body, app_secret)

    if len(received) != len(expected):
        logger.warning(
            f"Webhook rejected: signature length {len(received)}, expected {len(expected)}"
        )
        raise SignatureError("Webhook signature verification failed", reason="length_mismatch")

    if not hmac.compare_digest(received.lower().encode("ascii", "replace"), expected.encode("ascii")):
        logger.warning("Webhook rejected: signature mismatch")
        raise SignatureError("Webhook signature verification failed", reason="mismatch")


def verify_subscription(mode: Optional[str], token: Optional[str],
                        challenge: Optional[str], expected_token: Optional[str]) -> str:
    """
    Validate the GET subscription handshake.

    Returns:
        The challenge string to echo back unchanged

    Raises:
        SignatureError: if the mode is not ``subscribe`` or the token differs
    """
    if mode != "subscribe":
        logger.warning(f"Webhook verification rejected: unexpected mode {mode!r}")
        raise SignatureError("Webhook verification failed", reason="invalid_mode")

    if not expected_token:
        logger.error("Webhook verification rejected: WHATSAPP_WEBHOOK_VERIFY_TOKEN is not configured")
        raise SignatureError("Webhook verification failed", reason="missing_verify_token")

    if not token or not hmac.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8")):
        logger.warning("Webhook verification rejected: verify token mismatch")
        raise SignatureError("Webhook verification failed", reason="token_mismatch")

    if challenge is None:
        logger.warning("Webhook verification rejected: missing challenge")
        raise SignatureError("Webhook verification failed", reason="missing_challenge")

    logger.info("Webhook subscription verified")
    return challenge
