"""Unit tests for the HTTP notification client.

These tests verify how the client maps notification service responses and
transport errors by monkeypatching ``httpx.AsyncClient.post`` and asserting
the adapter behavior.
"""
import asyncio

import httpx
import pytest

from apps.orders.http_adapters import HttpNotificationClient, notifications_cb

BASE = "http://notifications:9003"
CTX = {"order_id": "o-1", "customer_name": "Asha"}


def _resp(status, body=None):
    return httpx.Response(status, json=body or {}, request=httpx.Request("POST", f"{BASE}/notify"))


@pytest.fixture(autouse=True)
def closed_circuit():
    notifications_cb.on_success()
    yield
    notifications_cb.on_success()


def _send(client, template_key="ready"):
    return asyncio.run(client.send("asha@example.com", template_key, CTX))


def test_sent_message_is_true(monkeypatch):
    """200 with sent=True maps to a delivered notification."""
    seen = {}

    async def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return _resp(200, {"sent": True, "skipped": False})

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)

    assert _send(HttpNotificationClient(base_url=BASE)) is True
    assert seen["url"] == f"{BASE}/notify"
    assert seen["json"] == {"to": "asha@example.com", "template_key": "ready", "context": CTX}
    assert seen["headers"]["Idempotency-Key"] == "o-1:ready"
    assert seen["headers"]["X-Circuit-State"] == "CLOSED"


def test_skipped_message_is_true(monkeypatch):
    async def fake_post(self, url, json=None, headers=None, **kw):
        return _resp(200, {"sent": False, "skipped": True})

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)
    assert _send(HttpNotificationClient(base_url=BASE)) is True


@pytest.mark.parametrize("status", [409, 422])
def test_rejected_request_is_false_without_retry(monkeypatch, status):
    calls = {"n": 0}

    async def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        return _resp(status, {"detail": "IDEMPOTENCY_CONFLICT"})

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)

    assert _send(HttpNotificationClient(base_url=BASE)) is False
    assert calls["n"] == 1
    assert notifications_cb.state == "CLOSED"


def test_network_error_propagates_after_retries(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 2
    calls = {"n": 0}

    async def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)

    with pytest.raises(httpx.ConnectError):
        _send(HttpNotificationClient(base_url=BASE))
    assert calls["n"] == 3


def test_unconfigured_client_reports_itself(settings):
    settings.NOTIFICATIONS_BASE_URL = ""
    assert HttpNotificationClient().configured is False
    assert HttpNotificationClient(base_url=BASE).configured is True
