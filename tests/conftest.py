"""Shared fixtures for the headshots test suite."""

from __future__ import annotations

import asyncio

import pytest

from headshots.assets.store import InMemoryAssetStore
from headshots.errors import AssetCopyError, NotificationError
from headshots.orders.models import Job, Order, OrderStatus
from headshots.orders.store import InMemoryJobStore, InMemoryOrderStore
from headshots.webhooks.reconciler import WebhookReconciler


class FakeBlobStorage:
    """BlobStorage that records copies and fails for chosen source URLs."""

    def __init__(self) -> None:
        self.copies: list[tuple[str, str]] = []
        self.fail_urls: set[str] = set()

    async def copy_from_url(self, source_url: str, key: str) -> str:
        # Yield so sibling copies and concurrent events interleave
        await asyncio.sleep(0)
        if source_url in self.fail_urls:
            raise AssetCopyError(source_url, key, "download HTTP 404")
        self.copies.append((source_url, key))
        return f"https://cdn.test/{key}"


class RecordingNotifier:
    """CompletionNotifier that records every notice it is asked to send."""

    def __init__(self) -> None:
        self.notices: list[tuple[str, str, int]] = []
        self.fail = False

    async def send_completion_notice(
        self, contact: str, result_location: str, asset_count: int
    ) -> None:
        if self.fail:
            raise NotificationError("SMTP error: connection refused")
        self.notices.append((contact, result_location, asset_count))


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def blob() -> FakeBlobStorage:
    return FakeBlobStorage()


@pytest.fixture
def asset_store(blob: FakeBlobStorage) -> InMemoryAssetStore:
    return InMemoryAssetStore(blob)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reconciler(job_store, order_store, asset_store, notifier) -> WebhookReconciler:
    return WebhookReconciler(
        job_store=job_store,
        order_store=order_store,
        asset_store=asset_store,
        notifier=notifier,
        public_base_url="https://headshots.test",
    )


@pytest.fixture
def seed_order(job_store, order_store):
    """Factory coroutine: create an order with one submitted job per style.

    Returns the order id. Job ids are ``{order_id}-{style}``.
    Sync tests wrap it in asyncio.run().
    """

    async def _seed(
        order_id: str = "ord_1",
        styles: tuple[str, ...] = ("corporate", "tech"),
        status: OrderStatus = OrderStatus.GENERATING,
        email: str = "customer@example.com",
        tier: str = "starter",
    ) -> str:
        await order_store.create(
            Order(order_id=order_id, email=email, tier=tier, status=status)
        )
        for style in styles:
            await job_store.create(
                Job(job_id=f"{order_id}-{style}", order_id=order_id, style=style)
            )
        return order_id

    return _seed
