"""Batch aggregation and release policy.

Pending orders are grouped by their exact ``(delivery_date, store_id)``
key. The aggregate of each group is a read-only projection recomputed from
whatever orders the caller passes in; nothing here touches the store.

The release policy only answers whether a batch *may* be released. It
never triggers a release itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from .domain import BatchKey, Order, OrderStatus, to_money

DEFAULT_RELEASE_THRESHOLD = Decimal("100.00")


@dataclass(frozen=True)
class Batch:
    """All pending orders sharing one key, plus their aggregate."""

    key: BatchKey
    orders: Tuple[Order, ...]
    order_count: int
    total_value: Decimal

    @property
    def order_ids(self) -> List[str]:
        return [o.id for o in self.orders]


def aggregate_batches(orders: Iterable[Order]) -> Dict[BatchKey, Batch]:
    """Group pending orders into batches keyed by date and store.

    Orders not in ``pending`` are ignored so the result is always a
    partition of the pending subset. Members are sorted by creation time
    (then id) so the output does not depend on input order.

    Args:
        orders: Any snapshot of orders.

    Returns:
        Mapping of BatchKey to Batch. Empty batches never appear.
    """
    groups: Dict[BatchKey, List[Order]] = {}
    for order in orders:
        if order.status != OrderStatus.PENDING:
            continue
        groups.setdefault(order.batch_key, []).append(order)

    batches: Dict[BatchKey, Batch] = {}
    for key, members in groups.items():
        members.sort(key=lambda o: (o.created_at, o.id))
        total = sum((o.total for o in members), Decimal("0"))
        batches[key] = Batch(
            key=key,
            orders=tuple(members),
            order_count=len(members),
            total_value=to_money(total),
        )
    return batches


@dataclass(frozen=True)
class ReleaseDecision:
    eligible: bool
    remaining: Decimal
    threshold: Decimal


@dataclass(frozen=True)
class ReleasePolicy:
    """Threshold rule deciding whether a batch may be released.

    Notes:
    - A batch exactly at the threshold is eligible.
    - ``remaining`` is floored at zero.
    """

    threshold: Decimal = DEFAULT_RELEASE_THRESHOLD

    def validate(self) -> None:
        if to_money(self.threshold) < 0:
            raise ValueError("threshold must be >= 0")

    def evaluate(self, batch: Batch) -> ReleaseDecision:
        threshold = to_money(self.threshold)
        remaining = max(threshold - batch.total_value, Decimal("0.00"))
        return ReleaseDecision(
            eligible=batch.total_value >= threshold,
            remaining=to_money(remaining),
            threshold=threshold,
        )


def default_policy() -> ReleasePolicy:
    p = ReleasePolicy()
    p.validate()
    return p
