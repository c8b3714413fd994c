"""P1 CRITICAL: Provider webhook signature verification tests.

Verifies:
- Valid v1 signature over "{id}.{timestamp}.{body}" is accepted
- Tampered body, wrong id, wrong secret are rejected
- Timestamp outside the 300s tolerance is rejected (replay)
- Multiple signatures (secret rotation) accepted if any matches
- Missing or malformed secret fails closed
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from headshots.webhooks.verification import compute_signature, verify_replicate

TEST_SECRET = "whsec_" + base64.b64encode(b"test-secret-key").decode()

BODY = b'{"id":"pred_1","status":"succeeded","output":["https://a.png"]}'
NOW = 1_760_000_000


def _headers(sig: str, webhook_id: str = "msg_1", ts: int = NOW) -> dict[str, str]:
    return {
        "webhook-id": webhook_id,
        "webhook-timestamp": str(ts),
        "webhook-signature": sig,
    }


def _v1(webhook_id: str = "msg_1", ts: int = NOW, body: bytes = BODY, secret: str = TEST_SECRET) -> str:
    return "v1," + compute_signature(secret, webhook_id, str(ts), body)


@pytest.fixture(autouse=True)
def _secret():
    with patch("headshots.webhooks.verification._REPLICATE_WEBHOOK_SECRET", TEST_SECRET):
        yield


@freeze_time(datetime.fromtimestamp(NOW, tz=timezone.utc))
class TestVerifyReplicate:
    def test_valid_signature(self):
        assert verify_replicate(BODY, _headers(_v1())) is True

    def test_signature_matches_reference_hmac(self):
        key = base64.b64decode(TEST_SECRET.removeprefix("whsec_"))
        digest = hmac.new(key, f"msg_1.{NOW}.".encode() + BODY, hashlib.sha256).digest()
        assert compute_signature(TEST_SECRET, "msg_1", str(NOW), BODY) == base64.b64encode(digest).decode()

    def test_tampered_body(self):
        assert verify_replicate(BODY + b" ", _headers(_v1())) is False

    def test_wrong_webhook_id(self):
        assert verify_replicate(BODY, _headers(_v1(), webhook_id="msg_2")) is False

    def test_wrong_secret(self):
        other = "whsec_" + base64.b64encode(b"other-secret").decode()
        assert verify_replicate(BODY, _headers(_v1(secret=other))) is False

    def test_unversioned_signature_ignored(self):
        sig = compute_signature(TEST_SECRET, "msg_1", str(NOW), BODY)
        assert verify_replicate(BODY, _headers(sig)) is False
        assert verify_replicate(BODY, _headers("v2," + sig)) is False

    def test_rotation_any_signature_matches(self):
        header = f"v1,aW52YWxpZA== {_v1()}"
        assert verify_replicate(BODY, _headers(header)) is True

    @pytest.mark.parametrize("missing", ["webhook-id", "webhook-timestamp", "webhook-signature"])
    def test_missing_header(self, missing):
        headers = _headers(_v1())
        del headers[missing]
        assert verify_replicate(BODY, headers) is False

    def test_non_numeric_timestamp(self):
        headers = _headers(_v1())
        headers["webhook-timestamp"] = "yesterday"
        assert verify_replicate(BODY, headers) is False

    def test_within_tolerance(self):
        ts = NOW - 299
        assert verify_replicate(BODY, _headers(_v1(ts=ts), ts=ts)) is True

    def test_stale_timestamp_rejected(self):
        ts = NOW - 301
        assert verify_replicate(BODY, _headers(_v1(ts=ts), ts=ts)) is False

    def test_future_timestamp_rejected(self):
        ts = NOW + 301
        assert verify_replicate(BODY, _headers(_v1(ts=ts), ts=ts)) is False


class TestFailClosed:
    def test_missing_secret_rejects(self):
        with patch("headshots.webhooks.verification._REPLICATE_WEBHOOK_SECRET", ""):
            assert verify_replicate(BODY, _headers(_v1(ts=int(time.time())), ts=int(time.time()))) is False

    def test_invalid_base64_secret_rejects(self):
        ts = int(time.time())
        with patch("headshots.webhooks.verification._REPLICATE_WEBHOOK_SECRET", "whsec_***not-base64***"):
            assert verify_replicate(BODY, _headers(_v1(ts=ts), ts=ts)) is False
