"""Idempotency keys for checkout order creation.

A checkout client may retry ``POST /api/orders/`` after a timeout. When it
sends an ``Idempotency-Key`` header the key is claimed in the same
transaction that creates the order and the created order id is attached to
it, so the key and the order commit or roll back together. A retry then
finds the key in one of these states:

- ``replay``: the response was stored; it is returned again.
- ``recover``: the order exists but the response was never stored (the
  first request failed after the commit); the order is answered from the
  store.
- in progress: neither an order nor a response is attached yet, so the
  first request is still running; the retry is refused with
  ``IDEMPOTENCY_IN_PROGRESS``.

A retry with the same key but a different payload is rejected with
``IDEMPOTENCY_CONFLICT``.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

NEW = "new"
REPLAY = "replay"
RECOVER = "recover"


class IdempotencyConflict(ValueError):
    code = "IDEMPOTENCY_CONFLICT"

    def __init__(self):
        super().__init__(self.code)


class IdempotencyInProgress(IdempotencyConflict):
    code = "IDEMPOTENCY_IN_PROGRESS"


def request_hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON payload (sorted keys, compact separators)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def claim(key: str, payload: dict):
    """Claim ``key`` for ``payload``.

    Call inside the transaction that creates the order, then
    :func:`attach` the order before it commits.

    Returns:
        tuple[str, IdempotencyKey]: ``(state, rec)`` with ``state`` one of
        ``NEW``, ``REPLAY`` or ``RECOVER``.

    Raises:
        IdempotencyConflict: The key exists with a different payload hash.
        IdempotencyInProgress: The key exists but its first request has
            neither created an order nor stored a response yet.
    """
    h = request_hash(payload)
    try:
        # savepoint so an IntegrityError only rolls back the insert
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h)
            return NEW, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict()
        if rec.response_status:
            return REPLAY, rec
        if rec.order_id is not None:
            return RECOVER, rec
        raise IdempotencyInProgress()


def attach(rec: IdempotencyKey, order_id) -> None:
    """Link the created order to its key; must run in the creating transaction."""
    rec.order_id = order_id
    rec.save(update_fields=["order_id"])


def remember(rec: IdempotencyKey, status_code: int, body: dict) -> None:
    """Store the final response so later retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    rec.save(update_fields=["response_status", "response_body"])
