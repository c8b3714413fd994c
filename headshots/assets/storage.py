"""Blob storage — copies provider-hosted images into owned S3 storage.

The provider's output URLs expire, so every generated image is downloaded
once and re-uploaded under a key derived from (order, style, index), with
the extension taken from the source URL (png when it has none). The
same identity always maps to the same key, so a redelivered event
overwrites rather than duplicates.

Env vars:
- ASSET_BUCKET: target bucket
- AWS_REGION: bucket region (default us-east-1)
- ASSET_PUBLIC_BASE_URL: public prefix for stored keys (CDN); defaults
  to the bucket's virtual-hosted S3 URL
"""

from __future__ import annotations

import asyncio
import logging
import os
import posixpath
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from headshots.errors import AssetCopyError

logger = logging.getLogger(__name__)

_DOWNLOAD_TIMEOUT = 60.0
_DEFAULT_CONTENT_TYPE = "image/png"

_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}


def extension_for(source_url: str) -> str:
    """Image extension from the source URL's path; ``png`` when unknown."""
    _, ext = posixpath.splitext(urlparse(source_url).path)
    ext = ext.lstrip(".").lower()
    return ext if ext in _EXTENSIONS else "png"


def generate_asset_key(order_id: str, style: str, index: int, ext: str = "png") -> str:
    """Storage key for the ``index``-th image of ``style`` within an order."""
    return f"headshots/{order_id}/{style}/{index}.{ext}"


@runtime_checkable
class BlobStorage(Protocol):
    """Store bytes fetched from a URL under a key, return the public URL."""

    async def copy_from_url(self, source_url: str, key: str) -> str:
        ...


class S3BlobStorage:
    """BlobStorage on S3: httpx download, boto3 put_object upload."""

    def __init__(
        self,
        bucket: str | None = None,
        region: str | None = None,
        public_base_url: str | None = None,
        s3_client=None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._bucket = bucket or os.environ.get("ASSET_BUCKET", "")
        self._region = region or os.environ.get("AWS_REGION", "us-east-1")
        base = public_base_url or os.environ.get("ASSET_PUBLIC_BASE_URL", "")
        if not base:
            base = f"https://{self._bucket}.s3.{self._region}.amazonaws.com"
        self._public_base_url = base.rstrip("/")
        self._s3 = s3_client or boto3.client("s3", region_name=self._region)
        self._http = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self._bucket)

    def public_url(self, key: str) -> str:
        return f"{self._public_base_url}/{key}"

    async def _download(self, source_url: str) -> tuple[bytes, str]:
        if self._http is not None:
            response = await self._http.get(source_url, timeout=_DOWNLOAD_TIMEOUT)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                response = await client.get(source_url, timeout=_DOWNLOAD_TIMEOUT)
        response.raise_for_status()
        content_type = response.headers.get("content-type", _DEFAULT_CONTENT_TYPE)
        return response.content, content_type.split(";")[0].strip()

    async def copy_from_url(self, source_url: str, key: str) -> str:
        """Download ``source_url`` and upload it to ``key``.

        Raises:
            AssetCopyError: download or upload failed
        """
        if not self.is_configured:
            raise AssetCopyError(source_url, key, "ASSET_BUCKET not set")

        try:
            body, content_type = await self._download(source_url)
        except httpx.HTTPStatusError as e:
            raise AssetCopyError(
                source_url, key, f"download HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise AssetCopyError(source_url, key, f"download {type(e).__name__}") from e

        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise AssetCopyError(source_url, key, f"upload {type(e).__name__}") from e

        logger.info("Stored %s (%d bytes, %s)", key, len(body), content_type)
        return self.public_url(key)
