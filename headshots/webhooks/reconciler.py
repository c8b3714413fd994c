"""Webhook reconciler — applies one provider event to local order state.

Paths, by event kind:
- training_complete:   hand off to the TrainingCompletionHandler (if any)
- generation_complete: copy images into owned storage, complete the job,
                       complete + notify the order once every job is done
- job_failed:          mark the job failed, leave the order alone
- intermediate:        acknowledge, no mutation
- unrecognized:        acknowledge, log the classification miss

Delivery contract:
- At-least-once: every path is safe to replay. Job updates never leave a
  terminal status, assets are keyed by (order, style, index), and order
  completion is a compare-and-set that exactly one caller wins.
- Only the winner of the order's -> completed transition sends the email.
- A failed image copy is logged and skipped; the job still completes.
- Benign misses (unknown job, vanished order) are logged, never raised.

The reconciler holds no state beyond its collaborators.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from headshots.assets.storage import extension_for, generate_asset_key
from headshots.assets.store import AssetStore
from headshots.errors import AssetCopyError, InvalidTransitionError
from headshots.notifications.email import CompletionNotifier
from headshots.orders.models import Job, JobStatus, OrderStatus
from headshots.orders.store import JobStore, OrderStore, advance_order
from headshots.webhooks.aggregator import is_order_complete
from headshots.webhooks.events import (
    EventKind,
    ImageOutput,
    ProviderEvent,
    TrainingOutput,
    classify,
)
from headshots.webhooks.training import TrainingCompletionHandler

logger = logging.getLogger(__name__)

_PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:3000")

# Sibling image copies in flight per event
_MAX_CONCURRENT_COPIES = 4


@dataclass
class ReconcileOutcome:
    """What one handle() call did."""

    kind: EventKind
    job_id: str
    mutated: bool = False
    assets_saved: int = 0
    assets_failed: int = 0
    order_completed: bool = False
    notified: bool = False
    detail: str = ""


def result_location(order_id: str, base_url: str | None = None) -> str:
    """Customer-facing results page for an order."""
    base = (base_url or _PUBLIC_BASE_URL).rstrip("/")
    return f"{base}/dashboard?order={order_id}"


class WebhookReconciler:
    """Reconciles provider events against Job / Order / Asset stores."""

    def __init__(
        self,
        job_store: JobStore,
        order_store: OrderStore,
        asset_store: AssetStore,
        notifier: CompletionNotifier,
        training_handler: TrainingCompletionHandler | None = None,
        public_base_url: str | None = None,
        max_concurrent_copies: int = _MAX_CONCURRENT_COPIES,
    ):
        self._jobs = job_store
        self._orders = order_store
        self._assets = asset_store
        self._notifier = notifier
        self._training = training_handler
        self._public_base_url = public_base_url
        self._max_concurrent_copies = max_concurrent_copies

    async def handle(self, event: ProviderEvent) -> ReconcileOutcome:
        """Apply ``event``. Safe to call repeatedly with the same event."""
        kind = classify(event)
        logger.info(
            "Provider event %s status=%s kind=%s", event.job_id, event.raw_status, kind.value
        )

        output = event.output
        if kind == EventKind.TRAINING_COMPLETE and isinstance(output, TrainingOutput):
            return await self._handle_training(event.job_id, output)
        if kind == EventKind.GENERATION_COMPLETE and isinstance(output, ImageOutput):
            return await self._handle_generation(event.job_id, list(output.urls))
        if kind == EventKind.JOB_FAILED:
            return await self._handle_failed(event.job_id, event.error)
        if kind == EventKind.INTERMEDIATE:
            return ReconcileOutcome(kind=kind, job_id=event.job_id, detail=event.raw_status)

        logger.warning(
            "Unrecognized provider event %s (status=%s, output=%s), acknowledged",
            event.job_id, event.raw_status, type(event.output).__name__,
        )
        return ReconcileOutcome(kind=kind, job_id=event.job_id, detail="classification_miss")

    # ── Training ─────────────────────────────────────────────────────────

    async def _handle_training(self, job_id: str, output: TrainingOutput) -> ReconcileOutcome:
        outcome = ReconcileOutcome(kind=EventKind.TRAINING_COMPLETE, job_id=job_id)
        if self._training is None:
            logger.info("Training %s complete, weights=%s, no handler configured", job_id, output.weights)
            outcome.detail = "no_training_handler"
            return outcome
        await self._training.on_training_complete(job_id, output)
        outcome.mutated = True
        return outcome

    # ── Generation ───────────────────────────────────────────────────────

    async def _handle_generation(self, job_id: str, urls: list[str]) -> ReconcileOutcome:
        outcome = ReconcileOutcome(kind=EventKind.GENERATION_COMPLETE, job_id=job_id)

        job = await self._jobs.get_by_provider_id(job_id)
        if job is None:
            logger.warning("Generation job not found for prediction %s, acknowledged", job_id)
            outcome.detail = "unknown_job"
            return outcome
        if job.status == JobStatus.FAILED:
            logger.warning("Job %s already failed, ignoring succeeded event", job_id)
            outcome.detail = "job_already_failed"
            return outcome

        logger.info("Generation %s complete: %d images for %s/%s", job_id, len(urls), job.order_id, job.style)

        semaphore = asyncio.Semaphore(self._max_concurrent_copies)

        async def _bounded(index: int, url: str) -> bool:
            async with semaphore:
                return await self._save_asset(job, index, url)

        results = await asyncio.gather(*(_bounded(i, u) for i, u in enumerate(urls)))
        outcome.assets_saved = sum(results)
        outcome.assets_failed = len(results) - outcome.assets_saved
        outcome.mutated = outcome.assets_saved > 0

        if await self._jobs.update_status(job_id, JobStatus.COMPLETED):
            outcome.mutated = True
        else:
            logger.info("Job %s was already completed (redelivery)", job_id)

        # Aggregation runs on redelivery too: an earlier attempt may have
        # stopped between the job update and the order transition.
        outcome.order_completed, outcome.notified = await self._complete_order_if_done(job.order_id)
        if outcome.order_completed:
            outcome.mutated = True
        return outcome

    async def _save_asset(self, job: Job, index: int, url: str) -> bool:
        key = generate_asset_key(job.order_id, job.style, index, extension_for(url))
        try:
            stored_url = await self._assets.copy_from_url(url, key)
            await self._assets.record_asset(
                job.order_id, job.style, index, key, stored_url, job.job_id
            )
        except AssetCopyError as e:
            logger.error("Failed to save headshot %d of job %s: %s", index, job.job_id, e.reason)
            return False
        except Exception:
            logger.exception("Failed to save headshot %d of job %s", index, job.job_id)
            return False
        return True

    async def _complete_order_if_done(self, order_id: str) -> tuple[bool, bool]:
        """Returns (this call completed the order, notice sent)."""
        if not await is_order_complete(self._jobs, order_id):
            return False, False

        try:
            won = await advance_order(self._orders, order_id, OrderStatus.COMPLETED)
        except InvalidTransitionError as e:
            logger.warning("Order %s is %s, not completing", order_id, e.current)
            return False, False
        if not won:
            current = await self._orders.get(order_id)
            if current is None:
                logger.warning("Order %s not found, skipping completion and notification", order_id)
            elif current.status == OrderStatus.COMPLETED:
                logger.info("Order %s already completed, skipping notification", order_id)
            else:
                logger.warning(
                    "Order %s still %s after contention, not completing",
                    order_id, current.status.value,
                )
            return False, False

        logger.info("Order %s completed", order_id)
        return True, await self._notify(order_id)

    async def _notify(self, order_id: str) -> bool:
        order = await self._orders.get(order_id)
        if order is None:
            logger.warning("Order %s vanished after completion, no notification", order_id)
            return False

        assets = await self._assets.list_by_order(order_id)
        try:
            await self._notifier.send_completion_notice(
                order.email,
                result_location(order_id, self._public_base_url),
                len(assets),
            )
        except Exception:
            logger.exception("Completion notice failed for order %s", order_id)
            return False
        logger.info("Order complete, email sent: %s (%d headshots)", order_id, len(assets))
        return True

    # ── Failure ──────────────────────────────────────────────────────────

    async def _handle_failed(self, job_id: str, error: str | None) -> ReconcileOutcome:
        logger.error("Provider job %s failed: %s", job_id, error)
        outcome = ReconcileOutcome(kind=EventKind.JOB_FAILED, job_id=job_id)
        outcome.mutated = await self._jobs.update_status(job_id, JobStatus.FAILED, error)
        if not outcome.mutated:
            outcome.detail = "unknown_or_terminal_job"
        return outcome
