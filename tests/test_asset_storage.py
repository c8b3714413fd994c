"""Tests for S3 blob storage (httpx download mocked, boto3 client mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from headshots.assets.storage import S3BlobStorage, extension_for, generate_asset_key
from headshots.errors import AssetCopyError


def _http(status: int = 200, content: bytes = b"\x89PNG", content_type: str = "image/png"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=content, headers={"content-type": content_type})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _storage(http_client, s3=None, **kwargs) -> S3BlobStorage:
    return S3BlobStorage(
        bucket=kwargs.pop("bucket", "headshots-bucket"),
        region="eu-west-1",
        s3_client=s3 or MagicMock(),
        http_client=http_client,
        **kwargs,
    )


def test_asset_key_layout():
    assert generate_asset_key("ord_1", "corporate", 3) == "headshots/ord_1/corporate/3.png"


@pytest.mark.parametrize(
    "url, ext",
    [
        ("https://replicate.delivery/out/0.png", "png"),
        ("https://replicate.delivery/out/0.webp", "webp"),
        ("https://replicate.delivery/out/0.JPEG?token=x", "jpeg"),
        ("https://replicate.delivery/out/0", "png"),
        ("https://replicate.delivery/out/0.tar", "png"),
    ],
)
def test_extension_from_source_url(url, ext):
    assert extension_for(url) == ext


class TestS3BlobStorage:
    @pytest.mark.asyncio
    async def test_copy_uploads_and_returns_public_url(self):
        s3 = MagicMock()
        storage = _storage(_http(content_type="image/jpeg; charset=binary"), s3)

        url = await storage.copy_from_url("https://replicate.delivery/a.png", "headshots/o/t/0.png")

        assert url == "https://headshots-bucket.s3.eu-west-1.amazonaws.com/headshots/o/t/0.png"
        s3.put_object.assert_called_once_with(
            Bucket="headshots-bucket",
            Key="headshots/o/t/0.png",
            Body=b"\x89PNG",
            ContentType="image/jpeg",
        )

    @pytest.mark.asyncio
    async def test_public_base_url_override(self):
        storage = _storage(_http(), public_base_url="https://cdn.example.com/")
        url = await storage.copy_from_url("https://src/a.png", "k/0.png")
        assert url == "https://cdn.example.com/k/0.png"

    @pytest.mark.asyncio
    async def test_download_http_error(self):
        s3 = MagicMock()
        storage = _storage(_http(status=404), s3)

        with pytest.raises(AssetCopyError) as exc_info:
            await storage.copy_from_url("https://src/gone.png", "k/0.png")

        assert "404" in exc_info.value.reason
        s3.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_download_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with pytest.raises(AssetCopyError) as exc_info:
            await _storage(client).copy_from_url("https://src/a.png", "k/0.png")
        assert "ConnectError" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_upload_client_error(self):
        s3 = MagicMock()
        s3.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )
        with pytest.raises(AssetCopyError) as exc_info:
            await _storage(_http(), s3).copy_from_url("https://src/a.png", "k/0.png")
        assert exc_info.value.key == "k/0.png"

    @pytest.mark.asyncio
    async def test_missing_bucket_rejected(self):
        storage = _storage(_http(), bucket="")
        storage._bucket = ""
        with pytest.raises(AssetCopyError):
            await storage.copy_from_url("https://src/a.png", "k/0.png")
