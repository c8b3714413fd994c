"""Generated asset store — the only writer of GeneratedAsset records.

Asset identity is (order_id, style, index). Recording the same identity
twice replaces the earlier record instead of adding a second one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol, runtime_checkable

from headshots.assets.storage import BlobStorage
from headshots.orders.models import GeneratedAsset

logger = logging.getLogger(__name__)


@runtime_checkable
class AssetStore(Protocol):
    """Copies images into owned storage and records them per order."""

    async def copy_from_url(self, source_url: str, key: str) -> str:
        ...

    async def record_asset(
        self,
        order_id: str,
        style: str,
        index: int,
        key: str,
        url: str,
        job_id: str,
    ) -> GeneratedAsset:
        ...

    async def list_by_order(self, order_id: str) -> list[GeneratedAsset]:
        ...


class InMemoryAssetStore:
    """Process-local AssetStore over a BlobStorage collaborator."""

    def __init__(self, blob: BlobStorage):
        self._blob = blob
        self._assets: dict[tuple[str, str, int], GeneratedAsset] = {}
        self._lock = asyncio.Lock()

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
        asset = GeneratedAsset(
            order_id=order_id,
            style=style,
            index=index,
            key=key,
            url=url,
            job_id=job_id,
            created_at=time.time(),
        )
        async with self._lock:
            if asset.identity in self._assets:
                logger.info("Asset %s re-recorded (redelivery)", key)
            self._assets[asset.identity] = asset
        return asset

    async def list_by_order(self, order_id: str) -> list[GeneratedAsset]:
        assets = [a for a in self._assets.values() if a.order_id == order_id]
        return sorted(assets, key=lambda a: (a.style, a.index))
