"""Generation kick-off — one provider job per purchased style.

Runs once per order, when its personal model finishes training. The
training -> generating compare-and-set guards against a redelivered
training event submitting the batch twice.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from headshots.orders.models import Job, OrderStatus, styles_for_tier
from headshots.orders.store import JobStore, OrderStore

logger = logging.getLogger(__name__)


@runtime_checkable
class GenerationProvider(Protocol):
    """Submits generation predictions to the provider."""

    async def submit_generation(self, model_ref: str, style: str) -> str:
        """Start one generation for ``style`` and return the provider job id."""
        ...


async def start_generation(
    order_store: OrderStore,
    job_store: JobStore,
    provider: GenerationProvider,
    order_id: str,
    model_ref: str,
) -> list[Job]:
    """Move the order to generating and submit one job per purchased style.

    A style whose submission fails is logged and skipped. If no style could
    be submitted the order is marked failed.

    Returns:
        The jobs recorded by this call (empty if the order was not in
        training, e.g. a redelivered training event).
    """
    order = await order_store.get(order_id)
    if order is None:
        logger.warning("Generation kick-off: order %s not found", order_id)
        return []

    if not await order_store.compare_and_set_status(
        order_id, OrderStatus.TRAINING, OrderStatus.GENERATING
    ):
        logger.info(
            "Generation kick-off skipped: order %s is %s", order_id, order.status.value
        )
        return []

    try:
        styles = styles_for_tier(order.tier)
    except KeyError:
        logger.error("Order %s has unknown tier %r", order_id, order.tier)
        styles = []

    jobs: list[Job] = []
    for style in styles:
        try:
            job_id = await provider.submit_generation(model_ref, style)
        except Exception:
            logger.exception("Generation submit failed: order=%s style=%s", order_id, style)
            continue
        jobs.append(await job_store.create(Job(job_id=job_id, order_id=order_id, style=style)))

    if not jobs:
        await order_store.compare_and_set_status(
            order_id, OrderStatus.GENERATING, OrderStatus.FAILED
        )
        logger.error("Order %s failed: no generation job could be submitted", order_id)
        return []

    logger.info(
        "Order %s generating: %d/%d styles submitted", order_id, len(jobs), len(styles)
    )
    return jobs
