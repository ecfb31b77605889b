"""Domain models, errors and ports for grocery orders.

This module contains the dataclasses describing an order and its line
items, the order status state machine, the error taxonomy raised by the
transitions, and protocol definitions (ports) for the external
collaborators: the order store and the notification channel.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce a number or numeric string into a 2-decimal ``Decimal``."""
    return Decimal(str(value)).quantize(CENT)


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    Orders start ``pending``, are moved to ``ready`` when their batch is
    released and to ``delivered`` once a driver confirms drop-off.
    """

    PENDING = "pending"
    READY = "ready"
    DELIVERED = "delivered"

    def can_transition_to(self, new: "OrderStatus") -> bool:
        """Return True when ``self -> new`` is an allowed forward move."""
        return new in _TRANSITIONS[self]


_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
}


# ---- Errors ----
class OrderDomainError(ValueError):
    """Base class for business rule violations.

    ``str(err)`` is the short error code so views can map it to a response
    body the same way for every subclass.
    """

    code = "ORDER_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(self.code)
        self.message = message or self.code


class StateConflict(OrderDomainError):
    """One or more orders are not in the state a transition requires."""

    code = "STATE_CONFLICT"

    def __init__(self, stale_ids: Iterable[str], message: str | None = None):
        self.stale_ids = sorted(str(i) for i in stale_ids)
        super().__init__(message or f"stale orders: {', '.join(self.stale_ids)}")


class OrderNotFound(OrderDomainError):
    code = "NOT_FOUND"


class InvalidReleaseRequest(OrderDomainError):
    code = "EMPTY_BATCH"


class BatchKeyMismatch(OrderDomainError):
    """The captured ids do not form the single batch the caller named."""

    code = "BATCH_KEY_MISMATCH"


class BatchNotEligible(OrderDomainError):
    """The captured batch total is still below the release threshold."""

    code = "BELOW_THRESHOLD"

    def __init__(self, remaining: Decimal):
        self.remaining = remaining
        super().__init__(f"{remaining} remaining before release")


class StoreUnavailable(RuntimeError):
    """The order store could not be read or written."""

    code = "STORE_UNAVAILABLE"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class LineItem:
    """A single line of an order, captured at checkout.

    Attributes:
        product_id: Catalogue identifier of the product.
        unit_price: Price per unit at checkout time.
        quantity: Number of units ordered.
    """

    product_id: str
    unit_price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class BatchKey:
    """Grouping key of a delivery batch: exact date and store id."""

    delivery_date: date
    store_id: str

    def __str__(self) -> str:
        return f"{self.delivery_date.isoformat()}/{self.store_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Order:
    """A customer's placed purchase.

    Attributes:
        id: Opaque unique identifier (UUID string).
        customer_name: Name used in notifications.
        customer_email: Address notifications are sent to.
        customer_phone: Contact number shown to drivers.
        delivery_address: Drop-off address.
        delivery_date: Calendar day the order is delivered on.
        store_id: Identifier of the store the order ships from.
        items: Immutable snapshot of the ordered line items.
        total: Sum of the line items, fixed at creation.
        status: Current OrderStatus.
        created_at: Creation timestamp.
    """

    id: str
    customer_name: str
    customer_email: str
    delivery_date: date
    store_id: str
    items: tuple = ()
    total: Decimal = Decimal("0.00")
    status: OrderStatus = OrderStatus.PENDING
    customer_phone: str = ""
    delivery_address: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        self.items = tuple(self.items)
        self.total = to_money(self.total)
        self.status = OrderStatus(self.status)
        if self.items and self.total != items_total(self.items):
            raise ValueError("TOTAL_MISMATCH")

    @property
    def batch_key(self) -> BatchKey:
        return BatchKey(self.delivery_date, self.store_id)

    def with_status(self, status: OrderStatus) -> "Order":
        return replace(self, status=status)

    @staticmethod
    def new(
        *,
        customer_name: str,
        customer_email: str,
        delivery_date: date,
        store_id: str,
        items: Sequence[LineItem],
        customer_phone: str = "",
        delivery_address: str = "",
    ) -> "Order":
        """Build a fresh ``pending`` order with a generated id and total."""
        if not items:
            raise ValueError("EMPTY_ORDER")
        return Order(
            id=str(uuid.uuid4()),
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            delivery_address=delivery_address,
            delivery_date=delivery_date,
            store_id=store_id,
            items=tuple(items),
            total=items_total(items),
        )


def items_total(items: Iterable[LineItem]) -> Decimal:
    return to_money(sum((i.subtotal for i in items), Decimal("0")))


# ---- Ports (DIP) ----
ChangeCallback = Callable[[List[str]], None]


class OrderStore(Protocol):
    """Port describing the durable collection of orders.

    ``update_status`` must be atomic across the whole id list: either every
    order moves from ``expected`` to ``new`` or none does.
    """

    def get(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def list_orders(
        self,
        *,
        status: Optional[OrderStatus] = None,
        delivery_date: Optional[date] = None,
        store_id: Optional[str] = None,
        order_ids: Optional[Sequence[str]] = None,
    ) -> List[Order]:
        """Filtered read, ordered by creation time ascending."""
        raise NotImplementedError()

    def recent_page(self, page, page_size: int) -> Tuple[int, int, List[Order]]:
        """Newest-first page as ``(count, page_number, orders)``."""
        raise NotImplementedError()

    def create(self, order: Order) -> Order:
        raise NotImplementedError()

    def update_status(
        self, order_ids: Sequence[str], expected: OrderStatus, new: OrderStatus
    ) -> List[Order]:
        """Atomically move every order in ``order_ids`` to ``new``.

        Raises:
            StateConflict: If any id is unknown or not in ``expected``.
        """
        raise NotImplementedError()

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a change callback; returns the unsubscribe function."""
        raise NotImplementedError()


class NotificationChannel(Protocol):
    """Port describing the outbound customer notification channel.

    ``configured`` is False when the channel has no backing provider; the
    fan-out then skips dispatch entirely.
    """

    configured: bool

    async def send(self, to: str, template_key: str, context: dict) -> bool:
        """Send one message; returns True on success, False on rejection."""
        raise NotImplementedError()
