"""
Utility functions for the relay API.
"""

import hmac
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def verify_hmac_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify the X-Hub-Signature-256 header sent with webhook deliveries.

    Args:
        body: Raw request body bytes
        signature: Header value, "sha256=" followed by the hex HMAC-SHA256
        secret: APP_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature:
        logger.info("Missing webhook signature")
        return False

    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
