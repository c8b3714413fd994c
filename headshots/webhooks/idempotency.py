"""Webhook delivery dedup — Redis claim per (job, terminal status).

Security contract:
- A terminal delivery is claimed with a short in-flight TTL before it is
  reconciled; a concurrent duplicate sees the claim and is acknowledged
- Only after reconciliation returns is the key marked seen for 24h
- If processing fails or is cancelled the claim is released; if the worker
  dies the in-flight claim expires, so a provider redelivery is processed
- Key pattern: webhook:seen:replicate:{job_id}:{status}
- If Redis is down, falls back to allowing (fail-open for availability);
  reconciliation is idempotent on its own
"""

from __future__ import annotations

import logging
import os

import redis

logger = logging.getLogger(__name__)

_DEDUP_TTL_SECONDS = 86400  # 24 hours

# Upper bound on one reconciliation; a crashed worker's claim lapses after this
_INFLIGHT_TTL_SECONDS = int(os.environ.get("WEBHOOK_INFLIGHT_TTL", "300"))

_KEY_PREFIX = "webhook:seen:replicate"

_INFLIGHT = "processing"
_SEEN = "1"


def _get_redis() -> redis.Redis:
    redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
    return redis.from_url(redis_url, decode_responses=True)


def _key(job_id: str, status: str) -> str:
    return f"{_KEY_PREFIX}:{job_id}:{status}"


def claim(job_id: str, status: str) -> bool:
    """Claim a delivery for processing.

    Uses Redis SET NX for atomic check-and-mark, with the in-flight TTL.

    Returns:
        True if this caller should process the delivery, False if the same
        job and status is already in flight or was already processed.
    """
    if not job_id:
        return True

    try:
        r = _get_redis()
        was_set = r.set(_key(job_id, status), _INFLIGHT, nx=True, ex=_INFLIGHT_TTL_SECONDS)
        if not was_set:
            logger.info("Duplicate webhook skipped: %s/%s", job_id, status)
            return False
        return True
    except Exception:
        logger.warning(
            "Redis unavailable for webhook dedup — allowing %s/%s",
            job_id,
            status,
            exc_info=True,
        )
        return True


def mark_seen(job_id: str, status: str) -> None:
    """Mark a delivery as processed (called after reconciliation returns)."""
    if not job_id:
        return
    try:
        _get_redis().set(_key(job_id, status), _SEEN, ex=_DEDUP_TTL_SECONDS)
    except Exception:
        logger.warning("Failed to mark webhook as seen: %s/%s", job_id, status)


def release(job_id: str, status: str) -> None:
    """Drop a claim after unfinished processing so a redelivery is processed."""
    if not job_id:
        return
    try:
        _get_redis().delete(_key(job_id, status))
    except Exception:
        logger.warning("Failed to release webhook claim: %s/%s", job_id, status)
