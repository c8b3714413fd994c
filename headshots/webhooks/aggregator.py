"""Order completion aggregation.

Read-only: derives whether an order's generation phase is done from the
status of every job it owns.
"""

from __future__ import annotations

from headshots.orders.models import JobStatus
from headshots.orders.store import JobStore


async def is_order_complete(job_store: JobStore, order_id: str) -> bool:
    """True iff the order has at least one job and every job is completed.

    A single failed or still-submitted job keeps the order incomplete.
    """
    jobs = await job_store.list_by_order(order_id)
    return bool(jobs) and all(j.status == JobStatus.COMPLETED for j in jobs)
