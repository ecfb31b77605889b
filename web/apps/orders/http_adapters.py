"""HTTP notification client with retries, circuit breaker and context headers.

This module implements the ``NotificationChannel`` port against the
notifications service using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- A circuit breaker for the notifications service to avoid hammering an
    unhealthy dependency, with HALF_OPEN probing after a timeout.
- A bounded retry policy with exponential backoff for transport errors and
    5xx responses.
- Idempotency: every message carries ``Idempotency-Key: <order>:<template>``
    so a retried request is never delivered twice.
"""

import asyncio
import threading
import time
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import NotificationChannel


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful trial call; stays HALF_OPEN while a
      single trial call is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_trial_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_trial_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Raises:
            RuntimeError: If the circuit is OPEN or a HALF_OPEN trial call is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_trial_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_trial_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_trial_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_trial_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_trial_in_flight = False


notifications_cb = CircuitBreaker(
    "notifications",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 2),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    # Retry only on transport errors or 5xx
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


# ---------------- Notifications Adapter ---------------- #

class HttpNotificationClient(NotificationChannel):
    """HTTP client for the notifications service.

    The client is ``configured`` only when a base URL is known; without one
    the fan-out treats the channel as disabled.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url if base_url is not None else getattr(settings, "NOTIFICATIONS_BASE_URL", "")
        self.timeout = timeout or getattr(settings, "HTTP_TIMEOUT_SECS", 3.0)

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def send(self, to: str, template_key: str, context: dict) -> bool:
        """Ask the notifications service to deliver one message.

        Business mappings:
        - 200 → True when the service sent or deliberately skipped the e-mail
        - 409 / 422 → False (rejected request), not counted as circuit failure

        Raises:
            RuntimeError: When the circuit is open.
            httpx.RequestError: For network/transport errors after retries.
            httpx.HTTPStatusError: For 5xx after retries or other non-2xx.
        """
        payload = {"to": to, "template_key": template_key, "context": context}
        max_retries, backoff = _retry_policy()
        tries = 0

        state = notifications_cb.before_call()
        headers = _request_headers({
            "Idempotency-Key": f"{context.get('order_id')}:{template_key}",
            "X-Circuit-State": state,
            "X-Retry-Count": "0",
        })

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = await client.post(f"{self.base_url}/notify", json=payload, headers=headers)
                        if resp.status_code == 200:
                            notifications_cb.on_success()
                            data = resp.json()
                            return bool(data.get("sent") or data.get("skipped"))
                        if resp.status_code in (409, 422):
                            notifications_cb.on_success()
                            return False
                        if not _should_retry(resp, None):
                            resp.raise_for_status()
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries:
                        notifications_cb.on_failure()
                        if exc:
                            raise exc
                        resp.raise_for_status()

                    sleep_s = backoff * (2 ** (tries - 1))
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    await asyncio.sleep(min(sleep_s, cap))
        finally:
            notifications_cb.on_finish()
