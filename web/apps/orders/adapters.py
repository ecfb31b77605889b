"""In-process adapters for the orders domain ports.

These adapters implement ``OrderStore`` and ``NotificationChannel``
without any database or network access. They are intended for unit tests
and local development where deterministic behavior is useful and external
services are not required.
"""

import asyncio
import threading
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from django.core.paginator import Paginator

from .domain import ChangeCallback, NotificationChannel, Order, OrderStatus, OrderStore, StateConflict


class InMemoryOrderStore(OrderStore):
    """Dict-backed ``OrderStore``.

    A single lock serializes every write so ``update_status`` is atomic
    across its id list. Subscribers are called after the lock is released.
    """

    def __init__(self, orders: Sequence[Order] = ()):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._seq: Dict[str, int] = {}
        self._subscribers: List[ChangeCallback] = []
        for o in orders:
            self._put(o)

    def _put(self, order: Order) -> None:
        self._seq.setdefault(order.id, len(self._seq))
        self._orders[order.id] = order

    def _emit(self, order_ids: List[str]) -> None:
        for cb in list(self._subscribers):
            cb(order_ids)

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(str(order_id))

    def list_orders(
        self,
        *,
        status: Optional[OrderStatus] = None,
        delivery_date: Optional[date] = None,
        store_id: Optional[str] = None,
        order_ids: Optional[Sequence[str]] = None,
    ) -> List[Order]:
        with self._lock:
            rows = list(self._orders.values())
        if order_ids is not None:
            wanted = {str(i) for i in order_ids}
            rows = [o for o in rows if o.id in wanted]
        if status is not None:
            rows = [o for o in rows if o.status == status]
        if delivery_date is not None:
            rows = [o for o in rows if o.delivery_date == delivery_date]
        if store_id is not None:
            rows = [o for o in rows if o.store_id == store_id]
        return sorted(rows, key=lambda o: (o.created_at, self._seq[o.id]))

    def recent_page(self, page, page_size: int) -> Tuple[int, int, List[Order]]:
        p = Paginator(list(reversed(self.list_orders())), page_size)
        page_obj = p.get_page(page)
        return p.count, page_obj.number, list(page_obj.object_list)

    def create(self, order: Order) -> Order:
        with self._lock:
            if order.id in self._orders:
                raise ValueError("DUPLICATE_ORDER")
            self._put(order)
        self._emit([order.id])
        return order

    def update_status(
        self, order_ids: Sequence[str], expected: OrderStatus, new: OrderStatus
    ) -> List[Order]:
        if not expected.can_transition_to(new):
            raise ValueError("INVALID_TRANSITION")
        ids = [str(i) for i in order_ids]
        with self._lock:
            stale = [i for i in ids if i not in self._orders or self._orders[i].status != expected]
            if stale:
                raise StateConflict(stale)
            updated = [self._orders[i].with_status(new) for i in ids]
            for o in updated:
                self._orders[o.id] = o
        self._emit(ids)
        return updated

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe


class NullNotificationChannel(NotificationChannel):
    """Channel used when no notification provider is configured."""

    configured = False

    async def send(self, to: str, template_key: str, context: dict) -> bool:
        return True


class RecordingNotificationChannel(NotificationChannel):
    """Channel that records messages in memory for test assertions.

    Recipients listed in ``fail_for`` raise ``ConnectionError``; recipients
    in ``reject_for`` return False; ``delay`` seconds are awaited before
    every send.
    """

    configured = True

    def __init__(self, fail_for=(), reject_for=(), delay: float = 0.0):
        self.sent: List[dict] = []
        self.fail_for = set(fail_for)
        self.reject_for = set(reject_for)
        self.delay = delay

    async def send(self, to: str, template_key: str, context: dict) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if to in self.fail_for:
            raise ConnectionError("CHANNEL_UNREACHABLE")
        if to in self.reject_for:
            return False
        self.sent.append({"to": to, "template_key": template_key, "context": dict(context)})
        return True

    def reset(self) -> None:
        self.sent.clear()
        self.fail_for.clear()
        self.reject_for.clear()
        self.delay = 0.0
