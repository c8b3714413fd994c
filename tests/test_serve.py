"""Tests for the app factory wiring."""

from __future__ import annotations

from unittest.mock import patch

from headshots.orders.store import InMemoryJobStore, InMemoryOrderStore
from headshots.serve import build_stores, create_app
from headshots.webhooks.reconciler import WebhookReconciler


def test_create_app_uses_injected_collaborators(job_store, order_store, asset_store, notifier):
    app = create_app(
        job_store=job_store, order_store=order_store,
        asset_store=asset_store, notifier=notifier,
    )

    assert app.state.job_store is job_store
    assert app.state.order_store is order_store
    assert isinstance(app.state.reconciler, WebhookReconciler)
    paths = {route.path for route in app.routes}
    assert {"/webhooks/replicate", "/webhooks/status", "/orders/{order_id}"} <= paths


@patch.dict("os.environ", {"HEADSHOTS_STORE": "memory", "AWS_REGION": "us-east-1"})
def test_build_stores_memory():
    jobs, orders, _assets = build_stores()
    assert isinstance(jobs, InMemoryJobStore)
    assert isinstance(orders, InMemoryOrderStore)


@patch.dict("os.environ", {"HEADSHOTS_STORE": "sqlite", "AWS_REGION": "us-east-1"})
def test_build_stores_unknown_kind_falls_back():
    jobs, _orders, _assets = build_stores()
    assert isinstance(jobs, InMemoryJobStore)


@patch.dict("os.environ", {"HEADSHOTS_STORE": "postgres", "AWS_REGION": "us-east-1"})
@patch("headshots.orders.postgres.init_tables")
def test_build_stores_postgres(mock_init):
    from headshots.orders.postgres import PostgresJobStore

    jobs, _orders, _assets = build_stores()

    mock_init.assert_called_once()
    assert isinstance(jobs, PostgresJobStore)
