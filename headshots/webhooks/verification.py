"""Webhook signature verification — constant-time HMAC for provider deliveries.

The provider signs with the standard-webhooks scheme:
- headers: webhook-id, webhook-timestamp, webhook-signature
- signature header: space-separated "v1,<base64 sig>" entries
- signed content: "{webhook-id}.{webhook-timestamp}.{raw body}"
- key: base64-decoded secret after the "whsec_" prefix, HMAC-SHA256

Security contract:
- All comparisons use hmac.compare_digest() (constant-time)
- Missing secret env var -> verification always fails (fail-closed)
- Timestamp tolerance: 300s (5 min) to prevent replay
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
import time

logger = logging.getLogger(__name__)

_REPLICATE_WEBHOOK_SECRET = os.environ.get("REPLICATE_WEBHOOK_SECRET", "")

_TIMESTAMP_TOLERANCE = int(os.environ.get("REPLICATE_SIGNATURE_TOLERANCE", "300"))

_SECRET_PREFIX = "whsec_"


def _signing_key(secret: str) -> bytes | None:
    raw = secret[len(_SECRET_PREFIX):] if secret.startswith(_SECRET_PREFIX) else secret
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("REPLICATE_WEBHOOK_SECRET is not valid base64, rejecting webhook")
        return None


def compute_signature(secret: str, webhook_id: str, timestamp: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 over "{id}.{timestamp}.{body}"."""
    key = _signing_key(secret) or b""
    signed = f"{webhook_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(key, signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_replicate(body: bytes, headers: dict[str, str]) -> bool:
    """Verify a provider delivery.

    Args:
        body: Raw request body bytes
        headers: Request headers (lowercase keys)

    Returns:
        True if a v1 signature matches and the timestamp is within tolerance
    """
    if not _REPLICATE_WEBHOOK_SECRET:
        logger.warning("REPLICATE_WEBHOOK_SECRET not set, rejecting webhook")
        return False
    if _signing_key(_REPLICATE_WEBHOOK_SECRET) is None:
        return False

    webhook_id = headers.get("webhook-id")
    timestamp_str = headers.get("webhook-timestamp")
    signature_header = headers.get("webhook-signature")
    if not webhook_id or not timestamp_str or not signature_header:
        return False

    try:
        timestamp = int(timestamp_str)
    except (ValueError, TypeError):
        return False

    if abs(time.time() - timestamp) > _TIMESTAMP_TOLERANCE:
        logger.warning("Webhook timestamp too old/future: %s", timestamp)
        return False

    expected = compute_signature(_REPLICATE_WEBHOOK_SECRET, webhook_id, timestamp_str, body)

    # Several signatures may be present during secret rotation
    candidates = []
    for entry in signature_header.split():
        version, _, sig = entry.partition(",")
        if version == "v1" and sig:
            candidates.append(sig)

    return any(hmac.compare_digest(expected, sig) for sig in candidates)
