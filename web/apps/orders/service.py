"""Order lifecycle service: batch release, delivery completion, checkout.

The service orchestrates the two status transitions against the provided
ports. Status writes always go through ``OrderStore.update_status`` with an
explicit id list, and notifications are fanned out only after that write
has returned.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

from .batching import Batch, ReleaseDecision, ReleasePolicy, aggregate_batches, default_policy
from .domain import (
    BatchKey,
    BatchKeyMismatch,
    BatchNotEligible,
    InvalidReleaseRequest,
    NotificationChannel,
    Order,
    OrderNotFound,
    OrderStatus,
    OrderStore,
    StateConflict,
)
from .notifications import FanOutReport, notify_orders

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchView:
    batch: Batch
    decision: ReleaseDecision


@dataclass(frozen=True)
class ReleaseResult:
    key: BatchKey
    orders: List[Order]
    notifications: FanOutReport


@dataclass(frozen=True)
class CompletionResult:
    order: Order
    notifications: Optional[FanOutReport] = None


@dataclass(frozen=True)
class PlacementResult:
    order: Order
    release: Optional[ReleaseResult] = None


class OrderLifecycleService:
    """Domain service driving orders through pending -> ready -> delivered.

    The service does not cache batches: every read recomputes them from the
    store so the store stays the only source of truth.
    """

    def __init__(
        self,
        store: OrderStore,
        notifier: NotificationChannel,
        policy: ReleasePolicy | None = None,
        *,
        notify_timeout: float = 5.0,
        auto_release: bool = False,
        notify_on_delivery: bool = False,
    ):
        """Initialize the service with required dependencies.

        Args:
            store: OrderStore holding every order.
            notifier: NotificationChannel used for the fan-out.
            policy: ReleasePolicy; defaults to the 100.00 threshold.
            notify_timeout: Per-notification timeout in seconds.
            auto_release: Release a batch as soon as a new order makes it
                eligible.
            notify_on_delivery: Send a ``delivered`` message after a
                delivery is confirmed.
        """
        self.store = store
        self.notifier = notifier
        self.policy = policy or default_policy()
        self.notify_timeout = notify_timeout
        self.auto_release = auto_release
        self.notify_on_delivery = notify_on_delivery

    # ---- Reads ----
    def batches(self) -> List[BatchView]:
        """Operator-facing view of every pending batch, sorted by key."""
        pending = self.store.list_orders(status=OrderStatus.PENDING)
        return _views(aggregate_batches(pending), self.policy)

    def batch_for(self, key: BatchKey) -> Optional[BatchView]:
        pending = self.store.list_orders(
            status=OrderStatus.PENDING,
            delivery_date=key.delivery_date,
            store_id=key.store_id,
        )
        batch = aggregate_batches(pending).get(key)
        if batch is None:
            return None
        return BatchView(batch=batch, decision=self.policy.evaluate(batch))

    def deliveries_for(self, day: date) -> List[Order]:
        """Driver-facing read: orders ready for delivery on ``day``."""
        return self.store.list_orders(status=OrderStatus.READY, delivery_date=day)

    # ---- Checkout ----
    def place_order(self, order: Order) -> PlacementResult:
        """Persist a checkout order and, if enabled, try to release its batch."""
        return self.after_checkout(self.create_order(order))

    def create_order(self, order: Order) -> Order:
        """Persist a new ``pending`` order without touching its batch."""
        if order.status != OrderStatus.PENDING:
            raise ValueError("ORDER_NOT_PENDING")
        created = self.store.create(order)
        logger.info(
            "order placed",
            extra={"order_id": created.id, "batch": str(created.batch_key), "total": str(created.total)},
        )
        return created

    def after_checkout(self, created: Order) -> PlacementResult:
        """Run auto release for a freshly created order's batch.

        A release lost to a concurrent trigger is logged and ignored; the
        order itself stays created either way.
        """
        if not self.auto_release:
            return PlacementResult(order=created)

        release = self._auto_release(created.batch_key)
        if release is None:
            return PlacementResult(order=created)
        refreshed = next((o for o in release.orders if o.id == created.id), created)
        return PlacementResult(order=refreshed, release=release)

    def _auto_release(self, key: BatchKey) -> Optional[ReleaseResult]:
        view = self.batch_for(key)
        if view is None or not view.decision.eligible:
            return None
        try:
            return self.release_batch(view.batch.order_ids, key=key)
        except (StateConflict, BatchNotEligible) as e:
            logger.info("auto release skipped", extra={"batch": str(key), "reason": str(e)})
            return None

    # ---- Transitions ----
    def release_batch(self, order_ids: Sequence[str], key: BatchKey | None = None) -> ReleaseResult:
        """Release a batch: move every captured order from pending to ready.

        Args:
            order_ids: Member ids captured when the operator looked at the
                batch. The write is scoped to exactly these ids.
            key: Batch key the operator saw, when known.

        Returns:
            ReleaseResult with the updated orders and the fan-out report.

        Raises:
            InvalidReleaseRequest: No ids given.
            StateConflict: Some ids are unknown or no longer pending.
            BatchKeyMismatch: The ids span several batches or another key.
            BatchNotEligible: The captured total is below the threshold.
        """
        ids = list(dict.fromkeys(str(i) for i in order_ids))
        if not ids:
            raise InvalidReleaseRequest()

        current = self.store.list_orders(order_ids=ids)
        found = {o.id for o in current}
        stale = [i for i in ids if i not in found]
        stale += [o.id for o in current if o.status != OrderStatus.PENDING]
        if stale:
            raise StateConflict(stale)

        keys = {o.batch_key for o in current}
        if len(keys) != 1 or (key is not None and key not in keys):
            raise BatchKeyMismatch(f"orders span {sorted(str(k) for k in keys)}")
        batch_key = keys.pop()

        batch = aggregate_batches(current)[batch_key]
        decision = self.policy.evaluate(batch)
        if not decision.eligible:
            raise BatchNotEligible(decision.remaining)

        released = self.store.update_status(ids, OrderStatus.PENDING, OrderStatus.READY)
        logger.info(
            "batch released",
            extra={"batch": str(batch_key), "orders": len(released), "total": str(batch.total_value)},
        )

        report = notify_orders(released, OrderStatus.READY, self.notifier, timeout=self.notify_timeout)
        return ReleaseResult(key=batch_key, orders=released, notifications=report)

    def complete_delivery(self, order_id: str) -> CompletionResult:
        """Mark a single ready order as delivered.

        Raises:
            OrderNotFound: Unknown order id.
            StateConflict: The order is not ``ready``.
        """
        order_id = str(order_id)
        if self.store.get(order_id) is None:
            raise OrderNotFound()

        (delivered,) = self.store.update_status([order_id], OrderStatus.READY, OrderStatus.DELIVERED)
        logger.info("order delivered", extra={"order_id": order_id})

        if not self.notify_on_delivery:
            return CompletionResult(order=delivered)
        report = notify_orders([delivered], OrderStatus.DELIVERED, self.notifier, timeout=self.notify_timeout)
        return CompletionResult(order=delivered, notifications=report)


def _views(batches, policy: ReleasePolicy) -> List[BatchView]:
    return [
        BatchView(batch=b, decision=policy.evaluate(b))
        for _, b in sorted(batches.items(), key=lambda kv: (kv[0].delivery_date, kv[0].store_id))
    ]


class BatchBoard:
    """Read-through cache of the batch view, invalidated by store changes.

    The cached snapshot is dropped on every change notification and
    recomputed from the store on the next read. Change notifications only
    reach the process that made the change, so with several worker
    processes a snapshot is also recomputed once it is older than
    ``max_age`` seconds (``0`` recomputes on every read, ``None`` never
    expires).
    """

    def __init__(self, store: OrderStore, policy: ReleasePolicy | None = None, max_age: float | None = None):
        self.store = store
        self.policy = policy or default_policy()
        self.max_age = max_age
        self._lock = threading.RLock()
        self._snapshot: Optional[List[BatchView]] = None
        self._taken_at = 0.0
        self._unsubscribe = None

    def open(self) -> "BatchBoard":
        with self._lock:
            if self._unsubscribe is None:
                self._unsubscribe = self.store.subscribe(self._invalidate)
        return self

    def close(self) -> None:
        with self._lock:
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None
            self._snapshot = None

    def _expired(self) -> bool:
        return self.max_age is not None and time.monotonic() - self._taken_at >= self.max_age

    def snapshot(self) -> List[BatchView]:
        with self._lock:
            if self._snapshot is None or self._unsubscribe is None or self._expired():
                pending = self.store.list_orders(status=OrderStatus.PENDING)
                self._snapshot = _views(aggregate_batches(pending), self.policy)
                self._taken_at = time.monotonic()
            return list(self._snapshot)

    def _invalidate(self, order_ids: List[str]) -> None:
        with self._lock:
            self._snapshot = None
