"""Training-completion boundary.

A succeeded training prediction carries the trained weights but no order
reference. The order is recovered through a TrainingJobIndex written when
training was submitted, then generation starts for the order's styles.

The reconciler only calls a TrainingCompletionHandler; without one the
training path is logged and nothing is mutated.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from headshots.generation import GenerationProvider, start_generation
from headshots.orders.models import Job
from headshots.orders.store import JobStore, OrderStore
from headshots.webhooks.events import TrainingOutput

logger = logging.getLogger(__name__)


@runtime_checkable
class TrainingJobIndex(Protocol):
    """Maps a provider training job id to the order it trains for."""

    async def record(self, training_job_id: str, order_id: str) -> None:
        ...

    async def order_for(self, training_job_id: str) -> str | None:
        ...


@runtime_checkable
class TrainingCompletionHandler(Protocol):
    async def on_training_complete(self, job_id: str, output: TrainingOutput) -> None:
        ...


class InMemoryTrainingJobIndex:
    """Process-local TrainingJobIndex. First recorded order wins."""

    def __init__(self) -> None:
        self._orders: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def record(self, training_job_id: str, order_id: str) -> None:
        async with self._lock:
            existing = self._orders.setdefault(training_job_id, order_id)
        if existing != order_id:
            logger.warning(
                "Training job %s already mapped to %s, ignoring %s",
                training_job_id, existing, order_id,
            )

    async def order_for(self, training_job_id: str) -> str | None:
        return self._orders.get(training_job_id)


class GenerationLauncher:
    """TrainingCompletionHandler that starts generation for the trained order."""

    def __init__(
        self,
        index: TrainingJobIndex,
        order_store: OrderStore,
        job_store: JobStore,
        provider: GenerationProvider,
    ):
        self._index = index
        self._orders = order_store
        self._jobs = job_store
        self._provider = provider

    async def on_training_complete(self, job_id: str, output: TrainingOutput) -> list[Job]:
        order_id = await self._index.order_for(job_id)
        if order_id is None:
            logger.warning("Training job %s has no recorded order, skipping", job_id)
            return []
        model_ref = output.version or output.weights
        return await start_generation(
            self._orders, self._jobs, self._provider, order_id, model_ref
        )
