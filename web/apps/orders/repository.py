"""Repository layer for persisting orders.

``DjangoOrderStore`` implements the domain ``OrderStore`` port on top of
the Django ORM. It returns domain ``Order`` objects so the service layer
is not coupled to ORM types, and translates database failures into
``StoreUnavailable``.
"""

import functools
import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from django.core.paginator import Paginator
from django.db import DatabaseError, transaction

from .domain import (
    ChangeCallback,
    LineItem,
    Order,
    OrderStatus,
    OrderStore,
    StateConflict,
    StoreUnavailable,
)
from .models import OrderModel, StoreModel
from .signals import announce, order_changed

logger = logging.getLogger(__name__)


def _guarded(fn):
    """Re-raise database errors from ``fn`` as ``StoreUnavailable``."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except DatabaseError as e:
            logger.error("order store failure", extra={"operation": fn.__name__, "error": str(e)})
            raise StoreUnavailable(str(e)) from e

    return wrapper


def _as_uuid(value) -> Optional[uuid.UUID]:
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        return None


def items_to_json(items) -> list:
    return [
        {"product_id": i.product_id, "unit_price": str(i.unit_price), "quantity": i.quantity}
        for i in items
    ]


def to_domain(obj: OrderModel) -> Order:
    """Map an ``OrderModel`` row into a domain ``Order``."""
    return Order(
        id=str(obj.id),
        customer_name=obj.customer_name,
        customer_email=obj.customer_email,
        customer_phone=obj.customer_phone,
        delivery_address=obj.delivery_address,
        delivery_date=obj.delivery_date,
        store_id=obj.store_id,
        items=tuple(
            LineItem(
                product_id=i["product_id"],
                unit_price=Decimal(str(i["unit_price"])),
                quantity=int(i["quantity"]),
            )
            for i in obj.items
        ),
        total=obj.total,
        status=OrderStatus(obj.status),
        created_at=obj.created_at,
    )


class DjangoOrderStore(OrderStore):
    """Order store backed by the ``orders`` table."""

    @_guarded
    def get(self, order_id: str) -> Optional[Order]:
        oid = _as_uuid(order_id)
        if oid is None:
            return None
        obj = OrderModel.objects.filter(id=oid).first()
        return to_domain(obj) if obj else None

    @_guarded
    def list_orders(
        self,
        *,
        status: Optional[OrderStatus] = None,
        delivery_date: Optional[date] = None,
        store_id: Optional[str] = None,
        order_ids: Optional[Sequence[str]] = None,
    ) -> List[Order]:
        qs = OrderModel.objects.all()
        if order_ids is not None:
            qs = qs.filter(id__in=[u for u in map(_as_uuid, order_ids) if u is not None])
        if status is not None:
            qs = qs.filter(status=status.value)
        if delivery_date is not None:
            qs = qs.filter(delivery_date=delivery_date)
        if store_id is not None:
            qs = qs.filter(store_id=store_id)
        return [to_domain(o) for o in qs.order_by("created_at", "internal_id")]

    @_guarded
    def recent_page(self, page, page_size: int) -> Tuple[int, int, List[Order]]:
        """One page of orders, newest first, paginated in the database.

        Returns:
            ``(count, page_number, orders)``; out-of-range pages clamp to
            the last page as ``Paginator.get_page`` does.
        """
        p = Paginator(OrderModel.objects.order_by("-created_at", "-internal_id"), page_size)
        page_obj = p.get_page(page)
        return p.count, page_obj.number, [to_domain(o) for o in page_obj.object_list]

    @_guarded
    def create(self, order: Order) -> Order:
        """Persist a new order record and return it as stored."""
        obj = OrderModel.objects.create(
            id=uuid.UUID(order.id),
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
            delivery_address=order.delivery_address,
            delivery_date=order.delivery_date,
            store_id=order.store_id,
            items=items_to_json(order.items),
            total=order.total,
            status=order.status.value,
        )
        return to_domain(obj)

    @_guarded
    def update_status(
        self, order_ids: Sequence[str], expected: OrderStatus, new: OrderStatus
    ) -> List[Order]:
        """Atomically move every order in ``order_ids`` from ``expected`` to ``new``.

        The rows are locked (``SELECT ... FOR UPDATE``) and checked before
        the write; the conditional ``UPDATE`` is checked again afterwards so
        the whole set rolls back if any row slipped out of ``expected``.

        Raises:
            StateConflict: With the ids that are unknown or not in
                ``expected``. No row is changed in that case.
        """
        if not expected.can_transition_to(new):
            raise ValueError("INVALID_TRANSITION")

        ids = list(dict.fromkeys(str(i) for i in order_ids))
        uuids = [u for u in map(_as_uuid, ids) if u is not None]

        with transaction.atomic():
            rows = {
                str(r.id): r
                for r in OrderModel.objects.select_for_update().filter(id__in=uuids)
            }
            stale = [i for i in ids if i not in rows or rows[i].status != expected.value]
            if stale:
                raise StateConflict(stale)

            changed = OrderModel.objects.filter(id__in=uuids, status=expected.value).update(status=new.value)
            if changed != len(ids):
                raise StateConflict(ids)
            announce(ids)

        updated = []
        for i in ids:
            rows[i].status = new.value
            updated.append(to_domain(rows[i]))
        return updated

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call ``callback(order_ids)`` after each committed order change."""

        def _receiver(sender, order_ids, **kwargs):
            callback(order_ids)

        order_changed.connect(_receiver, sender=OrderModel, weak=False)

        def unsubscribe():
            order_changed.disconnect(_receiver, sender=OrderModel)

        return unsubscribe


@_guarded
def stores_by_id(store_ids: Iterable[str]) -> Dict[str, StoreModel]:
    """``StoreModel`` rows for ``store_ids``; unknown ids are left out."""
    return {s.id: s for s in StoreModel.objects.filter(id__in=set(store_ids))}
