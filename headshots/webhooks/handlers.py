"""Webhook HTTP handlers — FastAPI routes for provider deliveries.

The POST handler:
1. Reads raw body (needed for HMAC verification)
2. Verifies the signature
3. Decodes the body into a ProviderEvent
4. Claims terminal deliveries in flight (duplicates acknowledged, not reprocessed)
5. Reconciles the event, then marks the delivery seen before acknowledging

Response contract:
- 200 {"received": true} for processed, ignored and duplicate events
- 401 only for signature failures
- 500 {"error": "Webhook processing failed"} when the body can't be decoded
  or reconciliation raised, so the provider redelivers
- Never return error details to the caller
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from headshots.errors import PayloadError
from headshots.webhooks.events import NoOutput, decode_body
from headshots.webhooks.idempotency import claim, mark_seen, release
from headshots.webhooks.verification import verify_replicate

logger = logging.getLogger(__name__)

_PROVIDER = "replicate"

# Webhook outcome counter for monitoring (in-memory, per process)
_webhook_counts: dict[str, int] = {}


def _log_webhook(job_id: str, status: str, outcome: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[outcome] = _webhook_counts.get(outcome, 0) + 1
    logger.info(
        "WEBHOOK_AUDIT provider=%s job=%s status=%s outcome=%s count=%d",
        _PROVIDER,
        job_id,
        status,
        outcome,
        _webhook_counts[outcome],
    )


def _received() -> JSONResponse:
    return JSONResponse({"received": True}, status_code=200)


def _processing_failed() -> JSONResponse:
    return JSONResponse({"error": "Webhook processing failed"}, status_code=500)


async def _handle_webhook(request: Request) -> JSONResponse:
    start = time.time()

    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    # 1. Verify signature
    if not verify_replicate(body, headers):
        _log_webhook("unknown", "unknown", "signature_failed")
        return JSONResponse({"status": "unauthorized"}, status_code=401)

    # 2. Decode
    try:
        event = decode_body(body)
    except PayloadError as e:
        logger.error("Undecodable provider webhook: %s", e)
        _log_webhook("unknown", "unknown", "invalid_payload")
        return _processing_failed()

    logger.info(
        "Provider webhook received: id=%s status=%s has_output=%s predict_time=%s",
        event.job_id,
        event.raw_status,
        not isinstance(event.output, NoOutput),
        event.predict_time,
    )

    # 3. Dedup terminal deliveries
    claimed = False
    if event.is_terminal:
        if not claim(event.job_id, event.raw_status):
            _log_webhook(event.job_id, event.raw_status, "duplicate")
            return _received()
        claimed = True

    # 4. Reconcile. The claim is kept only if handle() returned; any
    # exception or cancellation releases it so the redelivery is processed.
    reconciler = request.app.state.reconciler
    processed = False
    try:
        outcome = await reconciler.handle(event)
        processed = True
    except Exception:
        logger.exception("Webhook processing failed for %s", event.job_id)
        _log_webhook(event.job_id, event.raw_status, "failed")
        return _processing_failed()
    finally:
        if claimed:
            if processed:
                mark_seen(event.job_id, event.raw_status)
            else:
                release(event.job_id, event.raw_status)

    _log_webhook(event.job_id, event.raw_status, outcome.kind.value)

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s", elapsed_ms, event.job_id)

    return _received()


def register_webhook_routes(app: FastAPI) -> None:
    """Register provider webhook routes on the FastAPI app.

    Expects ``app.state.reconciler`` to be set before the first request.
    """

    @app.post("/webhooks/replicate")
    async def replicate_webhook(request: Request):
        """Receive provider prediction webhooks (signature-verified)."""
        return await _handle_webhook(request)

    @app.get("/webhooks/replicate")
    async def replicate_webhook_health():
        """Liveness probe."""
        return {
            "status": "ok",
            "service": "replicate-webhook",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/webhooks/status")
    async def webhook_status():
        """Webhook outcome counts for this process."""
        return {"counts": dict(_webhook_counts)}

    logger.info("Webhook routes registered: /webhooks/replicate")
