"""FastAPI app factory for the headshots webhook service.

Run with:
    uvicorn --factory headshots.serve:create_app

Env vars:
- HEADSHOTS_STORE: "memory" (default) or "postgres"
- LOG_LEVEL: level for the headshots.* loggers (default INFO)
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from headshots.assets.storage import S3BlobStorage
from headshots.assets.store import AssetStore, InMemoryAssetStore
from headshots.notifications.email import CompletionNotifier, SmtpCompletionNotifier
from headshots.orders.routes import register_order_routes
from headshots.orders.store import InMemoryJobStore, InMemoryOrderStore, JobStore, OrderStore
from headshots.webhooks.handlers import register_webhook_routes
from headshots.webhooks.reconciler import WebhookReconciler
from headshots.webhooks.training import TrainingCompletionHandler

logger = logging.getLogger(__name__)


def build_stores() -> tuple[JobStore, OrderStore, AssetStore]:
    """Build Job / Order / Asset stores from HEADSHOTS_STORE."""
    blob = S3BlobStorage()
    kind = os.environ.get("HEADSHOTS_STORE", "memory")
    if kind == "postgres":
        from headshots.orders.postgres import (
            PostgresAssetStore,
            PostgresJobStore,
            PostgresOrderStore,
            init_tables,
        )

        init_tables()
        return PostgresJobStore(), PostgresOrderStore(), PostgresAssetStore(blob)
    if kind != "memory":
        logger.warning("Unknown HEADSHOTS_STORE=%r, using in-memory stores", kind)
    return InMemoryJobStore(), InMemoryOrderStore(), InMemoryAssetStore(blob)


def create_app(
    job_store: JobStore | None = None,
    order_store: OrderStore | None = None,
    asset_store: AssetStore | None = None,
    notifier: CompletionNotifier | None = None,
    training_handler: TrainingCompletionHandler | None = None,
) -> FastAPI:
    """Create the app. Collaborators not passed in are built from env."""
    logging.getLogger("headshots").setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

    if job_store is None or order_store is None or asset_store is None:
        built_jobs, built_orders, built_assets = build_stores()
        job_store = job_store or built_jobs
        order_store = order_store or built_orders
        asset_store = asset_store or built_assets
    notifier = notifier or SmtpCompletionNotifier()

    app = FastAPI(title="Headshots Webhooks")
    app.state.job_store = job_store
    app.state.order_store = order_store
    app.state.asset_store = asset_store
    app.state.reconciler = WebhookReconciler(
        job_store=job_store,
        order_store=order_store,
        asset_store=asset_store,
        notifier=notifier,
        training_handler=training_handler,
    )

    register_webhook_routes(app)
    register_order_routes(app)
    return app
