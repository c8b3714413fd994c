"""PostgreSQL-backed Job, Order and Asset stores.

Three tables:
    orders           — one row per customer purchase
    generation_jobs  — one row per (order, style) provider job
    generated_assets — one row per stored image, unique on (order_id, style, idx)

Status writes are single conditional UPDATEs, so concurrent deliveries
serialize on the row and a terminal status is never overwritten.

psycopg calls are blocking; each store method runs its SQL in a worker
thread so the event loop keeps serving other deliveries.
"""

from __future__ import annotations

import asyncio
import logging
import os

import psycopg

from headshots.assets.storage import BlobStorage
from headshots.orders.models import (
    GeneratedAsset,
    Job,
    JobStatus,
    Order,
    OrderStatus,
    can_transition,
)

logger = logging.getLogger(__name__)

_DATABASE_URL = os.environ.get("DATABASE_URL", "postgresql://localhost:5432/headshots")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    order_id    TEXT PRIMARY KEY,
    email       TEXT NOT NULL,
    tier        TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'pending',
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS generation_jobs (
    job_id      TEXT PRIMARY KEY,
    order_id    TEXT NOT NULL REFERENCES orders(order_id),
    style       TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'submitted',
    error       TEXT,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_generation_jobs_order ON generation_jobs(order_id);

CREATE TABLE IF NOT EXISTS generated_assets (
    order_id    TEXT NOT NULL REFERENCES orders(order_id),
    style       TEXT NOT NULL,
    idx         INTEGER NOT NULL,
    key         TEXT NOT NULL,
    url         TEXT NOT NULL,
    job_id      TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (order_id, style, idx)
);
"""


def _get_conn() -> psycopg.Connection:
    return psycopg.connect(_DATABASE_URL, autocommit=True)


def init_tables() -> None:
    """Create tables if they don't exist."""
    with _get_conn() as conn:
        conn.execute(_SCHEMA)
    logger.info("Headshots tables initialized")


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

_JOB_COLUMNS = """job_id, order_id, style, status, error,
                  EXTRACT(EPOCH FROM created_at), EXTRACT(EPOCH FROM updated_at)"""

_ORDER_COLUMNS = """order_id, email, tier, status,
                    EXTRACT(EPOCH FROM created_at), EXTRACT(EPOCH FROM updated_at)"""

_ASSET_COLUMNS = """order_id, style, idx, key, url, job_id,
                    EXTRACT(EPOCH FROM created_at)"""


def _row_to_job(row) -> Job:
    return Job(
        job_id=row[0], order_id=row[1], style=row[2],
        status=JobStatus(row[3]), error=row[4],
        created_at=float(row[5]), updated_at=float(row[6]),
    )


def _row_to_order(row) -> Order:
    return Order(
        order_id=row[0], email=row[1], tier=row[2],
        status=OrderStatus(row[3]),
        created_at=float(row[4]), updated_at=float(row[5]),
    )


def _row_to_asset(row) -> GeneratedAsset:
    return GeneratedAsset(
        order_id=row[0], style=row[1], index=row[2],
        key=row[3], url=row[4], job_id=row[5],
        created_at=float(row[6]),
    )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def _create_job(job: Job) -> Job:
    with _get_conn() as conn:
        conn.execute(
            """INSERT INTO generation_jobs (job_id, order_id, style, status, error)
               VALUES (%s, %s, %s, %s, %s)
               ON CONFLICT (job_id) DO NOTHING""",
            (job.job_id, job.order_id, job.style, job.status.value, job.error),
        )
        row = conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM generation_jobs WHERE job_id = %s",
            (job.job_id,),
        ).fetchone()
    return _row_to_job(row)


def _get_job(job_id: str) -> Job | None:
    with _get_conn() as conn:
        row = conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM generation_jobs WHERE job_id = %s",
            (job_id,),
        ).fetchone()
    return _row_to_job(row) if row else None


def _list_jobs(order_id: str) -> list[Job]:
    with _get_conn() as conn:
        rows = conn.execute(
            f"""SELECT {_JOB_COLUMNS} FROM generation_jobs
                WHERE order_id = %s ORDER BY created_at""",
            (order_id,),
        ).fetchall()
    return [_row_to_job(r) for r in rows]


def _update_job_status(job_id: str, status: JobStatus, error: str | None) -> bool:
    with _get_conn() as conn:
        cur = conn.execute(
            """UPDATE generation_jobs
               SET status = %s, error = %s, updated_at = NOW()
               WHERE job_id = %s AND status = %s""",
            (status.value, error, job_id, JobStatus.SUBMITTED.value),
        )
        return cur.rowcount == 1


class PostgresJobStore:
    """JobStore on the generation_jobs table."""

    async def create(self, job: Job) -> Job:
        return await asyncio.to_thread(_create_job, job)

    async def get_by_provider_id(self, job_id: str) -> Job | None:
        return await asyncio.to_thread(_get_job, job_id)

    async def list_by_order(self, order_id: str) -> list[Job]:
        return await asyncio.to_thread(_list_jobs, order_id)

    async def update_status(
        self, job_id: str, status: JobStatus, error: str | None = None
    ) -> bool:
        return await asyncio.to_thread(_update_job_status, job_id, status, error)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def _create_order(order: Order) -> Order:
    with _get_conn() as conn:
        row = conn.execute(
            f"""INSERT INTO orders (order_id, email, tier, status)
                VALUES (%s, %s, %s, %s)
                RETURNING {_ORDER_COLUMNS}""",
            (order.order_id, order.email, order.tier, order.status.value),
        ).fetchone()
    return _row_to_order(row)


def _get_order(order_id: str) -> Order | None:
    with _get_conn() as conn:
        row = conn.execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE order_id = %s",
            (order_id,),
        ).fetchone()
    return _row_to_order(row) if row else None


def _cas_order_status(order_id: str, expected: OrderStatus, new: OrderStatus) -> bool:
    with _get_conn() as conn:
        cur = conn.execute(
            """UPDATE orders SET status = %s, updated_at = NOW()
               WHERE order_id = %s AND status = %s""",
            (new.value, order_id, expected.value),
        )
        return cur.rowcount == 1


class PostgresOrderStore:
    """OrderStore on the orders table."""

    async def create(self, order: Order) -> Order:
        return await asyncio.to_thread(_create_order, order)

    async def get(self, order_id: str) -> Order | None:
        return await asyncio.to_thread(_get_order, order_id)

    async def compare_and_set_status(
        self, order_id: str, expected: OrderStatus, new: OrderStatus
    ) -> bool:
        if not can_transition(expected, new):
            return False
        return await asyncio.to_thread(_cas_order_status, order_id, expected, new)


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


def _upsert_asset(
    order_id: str, style: str, index: int, key: str, url: str, job_id: str
) -> GeneratedAsset:
    with _get_conn() as conn:
        row = conn.execute(
            f"""INSERT INTO generated_assets (order_id, style, idx, key, url, job_id)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (order_id, style, idx) DO UPDATE SET
                    key = EXCLUDED.key,
                    url = EXCLUDED.url,
                    job_id = EXCLUDED.job_id
                RETURNING {_ASSET_COLUMNS}""",
            (order_id, style, index, key, url, job_id),
        ).fetchone()
    return _row_to_asset(row)


def _list_assets(order_id: str) -> list[GeneratedAsset]:
    with _get_conn() as conn:
        rows = conn.execute(
            f"""SELECT {_ASSET_COLUMNS} FROM generated_assets
                WHERE order_id = %s ORDER BY style, idx""",
            (order_id,),
        ).fetchall()
    return [_row_to_asset(r) for r in rows]


class PostgresAssetStore:
    """AssetStore on the generated_assets table over a BlobStorage."""

    def __init__(self, blob: BlobStorage):
        self._blob = blob

    async def copy_from_url(self, source_url: str, key: str) -> str:
        return await self._blob.copy_from_url(source_url, key)

    async def record_asset(
        self,
        order_id: str,
        style: str,
        index: int,
        key: str,
        url: str,
        job_id: str,
    ) -> GeneratedAsset:
        return await asyncio.to_thread(
            _upsert_asset, order_id, style, index, key, url, job_id
        )

    async def list_by_order(self, order_id: str) -> list[GeneratedAsset]:
        return await asyncio.to_thread(_list_assets, order_id)
