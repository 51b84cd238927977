"""Webhook security utilities.

Provides HMAC signature generation and verification for webhook payloads
to ensure authenticity and prevent tampering.

The signature is computed as HMAC-SHA256(secret, payload) over the exact
canonical body that is transmitted, encoded as lowercase hex. The delivery
timestamp travels in its own header and is not part of the signed data.
"""

import hashlib
import hmac
import time
from collections.abc import Mapping

import httpx
import structlog

from src.webhooks.errors import SignatureHeaderError

logger = structlog.get_logger(__name__)

# Header names
SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_HEADER = "X-Webhook-Event"


def current_timestamp_ms() -> int:
    """Milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def sign(payload: str, secret: str) -> str:
    """Generate HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Canonical payload string.
        secret: Subscription secret.

    Returns:
        Lowercase hex digest.
    """
    signature = hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    logger.debug(
        "webhook_signature_generated",
        payload_length=len(payload),
    )

    return signature


def verify(payload: str, signature: str, secret: str) -> bool:
    """Verify an HMAC-SHA256 signature.

    Never raises: malformed input of any kind yields False. Both the
    supplied and the expected signature are hashed to fixed-length digests
    before the constant-time comparison, so timing depends neither on where
    the first mismatch is nor on the length of the supplied value.

    Args:
        payload: Payload string exactly as received.
        signature: Claimed signature to verify.
        secret: Subscription secret.

    Returns:
        True if the signature matches, False otherwise.
    """
    if not (
        isinstance(payload, str)
        and isinstance(signature, str)
        and isinstance(secret, str)
    ):
        return False

    try:
        expected = sign(payload, secret).encode("ascii")
        candidate = signature.encode("utf-8")
    except UnicodeEncodeError:
        return False

    is_valid = hmac.compare_digest(
        hashlib.sha256(candidate).digest(),
        hashlib.sha256(expected).digest(),
    )

    if not is_valid:
        logger.warning("webhook_signature_invalid", payload_length=len(payload))

    return is_valid


def create_signature_headers(
    payload: str,
    secret: str,
    timestamp_ms: int,
) -> dict[str, str]:
    """Create HTTP headers with signature for webhook delivery.

    Args:
        payload: Canonical payload string.
        secret: Subscription secret.
        timestamp_ms: Delivery timestamp in milliseconds.

    Returns:
        Dictionary of headers to include in request.
    """
    return {
        SIGNATURE_HEADER: sign(payload, secret),
        TIMESTAMP_HEADER: str(timestamp_ms),
    }


def verify_from_headers(
    payload: str,
    headers: Mapping[str, str],
    secret: str,
    *,
    max_age_ms: int | None = None,
    now_ms: int | None = None,
) -> bool:
    """Verify a received webhook from its request headers.

    Header lookup is case-insensitive. When ``max_age_ms`` is given, a
    timestamp further than that from ``now_ms`` (in either direction)
    fails verification.

    Args:
        payload: Raw request body.
        headers: Request headers.
        secret: Subscription secret.
        max_age_ms: Optional freshness window.
        now_ms: Reference time, defaults to the current time.

    Returns:
        True if the signature is valid (and fresh, when checked).

    Raises:
        SignatureHeaderError: If a required header is missing or malformed.
    """
    lookup = httpx.Headers(dict(headers))
    signature = lookup.get(SIGNATURE_HEADER)
    timestamp_str = lookup.get(TIMESTAMP_HEADER)

    if not signature:
        raise SignatureHeaderError(
            f"Missing {SIGNATURE_HEADER} header", header=SIGNATURE_HEADER
        )

    if not timestamp_str:
        raise SignatureHeaderError(
            f"Missing {TIMESTAMP_HEADER} header", header=TIMESTAMP_HEADER
        )

    try:
        timestamp = int(timestamp_str)
    except ValueError as e:
        raise SignatureHeaderError(
            f"Invalid {TIMESTAMP_HEADER} header: must be integer",
            header=TIMESTAMP_HEADER,
        ) from e

    if max_age_ms is not None:
        reference = now_ms if now_ms is not None else current_timestamp_ms()
        age = abs(reference - timestamp)
        if age > max_age_ms:
            logger.warning(
                "webhook_signature_expired",
                timestamp=timestamp,
                age_ms=age,
                max_age_ms=max_age_ms,
            )
            return False

    return verify(payload, signature, secret)
