import asyncio

import httpx
import pytest

from apps.orders.http_adapters import CircuitBreaker, HttpNotificationClient, notifications_cb

BASE = "http://x"


def _resp(status, body=None):
    return httpx.Response(status, json=body or {}, request=httpx.Request("POST", f"{BASE}/notify"))


def _send():
    return asyncio.run(
        HttpNotificationClient(base_url=BASE).send("a@example.com", "ready", {"order_id": "o-1"})
    )


def test_notifications_retry_on_5xx(monkeypatch, settings):
    # fast retries, at least one
    settings.HTTP_RETRY_MAX = 1
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    notifications_cb.on_success()

    calls = {"n": 0, "retry_headers": []}

    async def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        calls["retry_headers"].append(headers["X-Retry-Count"])
        if calls["n"] == 1:
            return _resp(503)
        return _resp(200, {"sent": True})

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)

    assert _send() is True
    assert calls["n"] == 2
    assert calls["retry_headers"] == ["0", "1"]


def test_notifications_5xx_exhausts_retries(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    notifications_cb.on_success()

    async def fake_post(self, url, json=None, headers=None, **kwargs):
        return _resp(502)

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)

    with pytest.raises(httpx.HTTPStatusError):
        _send()
    notifications_cb.on_success()


def test_no_retry_on_4xx(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 3
    notifications_cb.on_success()
    calls = {"n": 0}

    async def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        return _resp(400)

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)

    with pytest.raises(httpx.HTTPStatusError):
        _send()
    assert calls["n"] == 1


def test_open_circuit_short_circuits_calls(monkeypatch):
    cb = CircuitBreaker("notifications", fail_threshold=1, reset_timeout=60.0)
    monkeypatch.setattr("apps.orders.http_adapters.notifications_cb", cb, raising=True)

    async def fake_post(self, url, json=None, headers=None, **kwargs):
        raise AssertionError("no request while open")

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post, raising=True)
    cb.on_failure()

    assert cb.state == "OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_OPEN"):
        _send()


def test_breaker_half_open_trial_then_close():
    cb = CircuitBreaker("t", fail_threshold=2, reset_timeout=0.0)
    cb.on_failure()
    assert cb.state == "CLOSED"
    cb.on_failure()
    # reset_timeout of zero moves straight to HALF_OPEN
    assert cb.state == "HALF_OPEN"
    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_HALF_OPEN_BUSY"):
        cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"


def test_breaker_failed_trial_call_reopens():
    cb = CircuitBreaker("t", fail_threshold=1, reset_timeout=60.0)
    cb.on_failure()
    cb._state = "HALF_OPEN"
    cb.on_failure()
    assert cb._state == "OPEN"
