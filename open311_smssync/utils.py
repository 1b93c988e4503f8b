"""
Utility functions for the SMSSync endpoint.
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def verify_secret(provided: Optional[str], secret: str) -> bool:
    """
    Verify the shared secret sent by the SMSSync device.

    Args:
        provided: Secret from the request (query param or body field)
        secret: Configured SECRET

    Returns:
        True if the secrets match, False otherwise
    """
    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(
        (provided or "").encode("utf-8"),
        (secret or "").encode("utf-8"),
    )
    logger.debug(f"Secret verification: {'valid' if is_valid else 'invalid'}")
    return is_valid


def compute_sms_hash(
    from_msisdn: str,
    message: str,
    message_id: Optional[str] = None,
    sent_timestamp: Optional[str] = None
) -> str:
    """
    Derive the idempotency hash of an inbound sms.

    The device resends the same message_id and sent_timestamp when it
    retries a post, so retries map to the same hash.
    """
    parts = [from_msisdn or "", message or "", message_id or "", sent_timestamp or ""]
    return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()
