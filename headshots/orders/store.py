"""Job and Order stores — protocols plus in-memory implementations.

Status updates are atomic read-modify-writes: a terminal status is never
overwritten, and order completion goes through compare_and_set_status so
only one caller wins the transition.

Records handed out are copies; callers re-read instead of holding on to
a record across two mutations.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Protocol, runtime_checkable

from headshots.errors import InvalidTransitionError
from headshots.orders.models import (
    Job,
    JobStatus,
    Order,
    OrderStatus,
    can_transition,
    can_transition_job,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class JobStore(Protocol):
    """Durable mapping from provider job id to generation job."""

    async def create(self, job: Job) -> Job:
        """Insert a job. An existing job with the same id is returned unchanged."""
        ...

    async def get_by_provider_id(self, job_id: str) -> Job | None:
        ...

    async def list_by_order(self, order_id: str) -> list[Job]:
        ...

    async def update_status(
        self, job_id: str, status: JobStatus, error: str | None = None
    ) -> bool:
        """Move a submitted job to a terminal status.

        Returns True if the job changed, False if it was missing or already
        terminal (a redelivered terminal event is a no-op).
        """
        ...


@runtime_checkable
class OrderStore(Protocol):
    """Durable mapping from order id to customer order."""

    async def create(self, order: Order) -> Order:
        ...

    async def get(self, order_id: str) -> Order | None:
        ...

    async def compare_and_set_status(
        self, order_id: str, expected: OrderStatus, new: OrderStatus
    ) -> bool:
        """Set status to ``new`` only if it is currently ``expected``.

        Returns True for the single caller that performed the transition.
        """
        ...


class InMemoryJobStore:
    """Process-local JobStore for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> Job:
        async with self._lock:
            existing = self._jobs.get(job.job_id)
            if existing is not None:
                logger.info("Job %s already recorded, keeping existing", job.job_id)
                return dataclasses.replace(existing)
            self._jobs[job.job_id] = dataclasses.replace(job)
            return dataclasses.replace(job)

    async def get_by_provider_id(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return dataclasses.replace(job) if job else None

    async def list_by_order(self, order_id: str) -> list[Job]:
        return [
            dataclasses.replace(j) for j in self._jobs.values() if j.order_id == order_id
        ]

    async def update_status(
        self, job_id: str, status: JobStatus, error: str | None = None
    ) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if not can_transition_job(job.status, status):
                if job.status != status:
                    logger.warning(
                        "Job %s is %s, ignoring late %s",
                        job_id, job.status.value, status.value,
                    )
                return False
            job.status = status
            job.error = error
            job.updated_at = time.time()
            return True


class InMemoryOrderStore:
    """Process-local OrderStore for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: Order) -> Order:
        async with self._lock:
            if order.order_id in self._orders:
                raise ValueError(f"Order {order.order_id} already exists")
            self._orders[order.order_id] = dataclasses.replace(order)
            return dataclasses.replace(order)

    async def get(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return dataclasses.replace(order) if order else None

    async def compare_and_set_status(
        self, order_id: str, expected: OrderStatus, new: OrderStatus
    ) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != expected:
                return False
            if not can_transition(expected, new):
                return False
            order.status = new
            order.updated_at = time.time()
            return True


_MAX_CAS_ATTEMPTS = len(OrderStatus)


async def advance_order(store: OrderStore, order_id: str, new: OrderStatus) -> bool:
    """Move an order forward to ``new`` through compare-and-set.

    Re-reads and retries when another writer moved the order in between.
    Each retry sees a strictly later status, so attempts are bounded by the
    number of statuses.

    Returns:
        True if this call performed the transition, False if the order is
        missing or already at ``new``.

    Raises:
        InvalidTransitionError: the order is past ``new`` or terminal.
    """
    for _ in range(_MAX_CAS_ATTEMPTS):
        order = await store.get(order_id)
        if order is None:
            logger.warning("Order %s not found, cannot move to %s", order_id, new.value)
            return False
        if order.status == new:
            return False
        if not can_transition(order.status, new):
            raise InvalidTransitionError(order_id, order.status.value, new.value)
        if await store.compare_and_set_status(order_id, order.status, new):
            logger.info(
                "Order %s: %s -> %s", order_id, order.status.value, new.value
            )
            return True
    logger.warning("Order %s: gave up moving to %s after contention", order_id, new.value)
    return False
