"""Security test fixtures.

Responsibilities:
- Creates the FastAPI `app` fixture over in-memory stores (no Postgres, S3 or SMTP)
- Patches the provider webhook secret and the Redis dedup client
- Provides `sign` for building standard-webhooks headers
- Scoped to tests/security/ only -- invisible to non-security tests

The global tests/conftest.py provides the stores, fake blob storage and
recording notifier reused here.
"""

from __future__ import annotations

import base64
import time
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from headshots.serve import create_app
from headshots.webhooks.verification import compute_signature

TEST_SECRET = "whsec_" + base64.b64encode(b"test-secret-key").decode()


@pytest.fixture
def redis_mock():
    """Redis client used by webhook dedup. set() succeeds (not a duplicate) by default."""
    mock_r = MagicMock()
    mock_r.set.return_value = True
    with patch("headshots.webhooks.idempotency._get_redis", return_value=mock_r):
        yield mock_r


@pytest.fixture
def app(job_store, order_store, asset_store, notifier, redis_mock):
    """App wired to the shared in-memory collaborators, with a known signing secret."""
    with patch("headshots.webhooks.verification._REPLICATE_WEBHOOK_SECRET", TEST_SECRET):
        yield create_app(
            job_store=job_store,
            order_store=order_store,
            asset_store=asset_store,
            notifier=notifier,
        )


@pytest.fixture
def client(app):
    """Unauthenticated TestClient (provider perspective)."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def sign():
    """Factory for signed delivery headers.

    sign(body, webhook_id="msg_1", timestamp=None, secret=TEST_SECRET) -> headers
    """

    def _sign(
        body: bytes,
        webhook_id: str = "msg_1",
        timestamp: int | None = None,
        secret: str = TEST_SECRET,
    ) -> dict[str, str]:
        ts = str(int(time.time()) if timestamp is None else timestamp)
        sig = compute_signature(secret, webhook_id, ts, body)
        return {
            "webhook-id": webhook_id,
            "webhook-timestamp": ts,
            "webhook-signature": f"v1,{sig}",
            "Content-Type": "application/json",
        }

    return _sign
