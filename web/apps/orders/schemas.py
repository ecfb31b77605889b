"""Pydantic schemas for orders, batches and driver reads.

Request schemas validate incoming payloads before they are mapped to domain
objects; read schemas shape domain objects into JSON responses. Money is
serialized as a 2-decimal string.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

STORE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _store_id(v: str) -> str:
    if not STORE_ID_RE.match(v):
        raise ValueError("Invalid store id format")
    return v


class LineItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        product_id: Catalogue identifier of the product.
        unit_price: Price per unit as computed by checkout (2 decimals).
        quantity: Positive integer indicating units ordered.
    """

    product_id: str = Field(min_length=1, max_length=64)
    unit_price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    quantity: int = Field(gt=0, le=999)


class CreateOrderDTO(BaseModel):
    """Schema for creating an order at checkout.

    Attributes:
        customer_name: Name used in notifications.
        customer_email: Address notifications are sent to.
        customer_phone: Optional contact number for drivers.
        delivery_address: Drop-off address.
        delivery_date: Calendar day of delivery.
        store_id: Store the order ships from.
        items: At least one ``LineItemIn``.
    """

    customer_name: str = Field(min_length=1, max_length=120)
    customer_email: str = Field(max_length=254)
    customer_phone: str = Field(default="", max_length=32)
    delivery_address: str = Field(min_length=1, max_length=500)
    delivery_date: date
    store_id: str
    items: List[LineItemIn] = Field(min_length=1)

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Normalize the e-mail to lowercase and check its shape.

        Raises:
            ValueError: When the address does not look like ``a@b.c``.
        """
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email address")
        return v2

    @field_validator("store_id")
    @classmethod
    def validate_store_id(cls, v: str) -> str:
        return _store_id(v)


class ReleaseBatchDTO(BaseModel):
    """Schema for releasing a batch.

    ``order_ids`` are the member ids the operator saw when deciding; the
    release is applied to exactly these ids.
    """

    delivery_date: date
    store_id: str
    order_ids: List[str] = Field(min_length=1)

    @field_validator("store_id")
    @classmethod
    def validate_store_id(cls, v: str) -> str:
        return _store_id(v)


class LineItemOut(BaseModel):
    product_id: str
    unit_price: Decimal
    quantity: int


class OrderReadDTO(BaseModel):
    id: str
    status: str
    customer_name: str
    customer_email: str
    customer_phone: str = ""
    delivery_address: str = ""
    delivery_date: date
    store_id: str
    store_name: Optional[str] = None
    store_location: Optional[str] = None
    items: List[LineItemOut] = []
    total: Decimal
    created_at: datetime

    @classmethod
    def from_order(cls, order, store=None) -> "OrderReadDTO":
        """Build the read model; ``store`` is the ``StoreModel`` row, when known."""
        return cls(
            id=order.id,
            status=order.status.value,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
            delivery_address=order.delivery_address,
            delivery_date=order.delivery_date,
            store_id=order.store_id,
            store_name=store.name if store else None,
            store_location=store.location if store else None,
            items=[
                LineItemOut(product_id=i.product_id, unit_price=i.unit_price, quantity=i.quantity)
                for i in order.items
            ],
            total=order.total,
            created_at=order.created_at,
        )


class BatchReadDTO(BaseModel):
    delivery_date: date
    store_id: str
    order_ids: List[str]
    order_count: int
    total_value: Decimal
    threshold: Decimal
    eligible: bool
    remaining: Decimal

    @classmethod
    def from_view(cls, view) -> "BatchReadDTO":
        b, d = view.batch, view.decision
        return cls(
            delivery_date=b.key.delivery_date,
            store_id=b.key.store_id,
            order_ids=b.order_ids,
            order_count=b.order_count,
            total_value=b.total_value,
            threshold=d.threshold,
            eligible=d.eligible,
            remaining=d.remaining,
        )
