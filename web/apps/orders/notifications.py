"""Best-effort customer notification fan-out.

One message is dispatched per order, concurrently, each bounded by its own
timeout. A failed, rejected or timed-out dispatch is logged and recorded in
the returned report; it never cancels sibling dispatches and never reaches
the caller as an exception. Status changes are committed before the
fan-out starts, so nothing here can affect them.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence, Tuple

from asgiref.sync import async_to_sync

from .domain import NotificationChannel, Order, OrderStatus

logger = logging.getLogger(__name__)


class NotificationDispatchFailure(Exception):
    """A single notification could not be delivered."""


@dataclass(frozen=True)
class DispatchOutcome:
    order_id: str
    delivered: bool
    error: str | None = None


@dataclass(frozen=True)
class FanOutReport:
    """Result of notifying a set of orders about one status."""

    status: OrderStatus
    outcomes: Tuple[DispatchOutcome, ...] = field(default_factory=tuple)
    skipped: bool = False

    @property
    def sent(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.delivered)

    @property
    def failed_order_ids(self) -> list[str]:
        return [o.order_id for o in self.outcomes if not o.delivered]

    def as_dict(self) -> dict:
        return {"sent": self.sent, "failed": self.failed, "skipped": self.skipped}


def message_context(order: Order) -> dict:
    return {"order_id": order.id, "customer_name": order.customer_name}


async def _dispatch(
    channel: NotificationChannel, order: Order, status: OrderStatus, timeout: float
) -> DispatchOutcome:
    try:
        ok = await asyncio.wait_for(
            channel.send(order.customer_email, status.value, message_context(order)),
            timeout,
        )
        if not ok:
            raise NotificationDispatchFailure("REJECTED")
    except asyncio.TimeoutError:
        error = "TIMEOUT"
    except Exception as e:
        error = str(e) or e.__class__.__name__
    else:
        return DispatchOutcome(order_id=order.id, delivered=True)

    logger.warning(
        "notification dispatch failed",
        extra={"order_id": order.id, "template_key": status.value, "error": error},
    )
    return DispatchOutcome(order_id=order.id, delivered=False, error=error)


async def fan_out(
    orders: Sequence[Order],
    status: OrderStatus,
    channel: NotificationChannel,
    *,
    timeout: float = 5.0,
) -> FanOutReport:
    """Notify every order's customer about ``status``.

    Args:
        orders: Orders whose status change has already been committed.
        status: Template key to send (``ready`` or ``delivered``).
        channel: Outbound channel. An unconfigured channel short-circuits
            into a skipped report.
        timeout: Per-dispatch timeout in seconds.

    Returns:
        FanOutReport with one outcome per order.
    """
    if not getattr(channel, "configured", False):
        logger.info(
            "notification channel not configured - skipping",
            extra={"template_key": status.value, "orders": len(orders)},
        )
        return FanOutReport(status=status, skipped=True)

    if not orders:
        return FanOutReport(status=status)

    results = await asyncio.gather(
        *(_dispatch(channel, o, status, timeout) for o in orders),
        return_exceptions=True,
    )

    outcomes = []
    for order, res in zip(orders, results):
        if isinstance(res, BaseException):
            # _dispatch handles Exception itself; this only sees cancellations
            logger.warning(
                "notification dispatch aborted",
                extra={"order_id": order.id, "error": repr(res)},
            )
            res = DispatchOutcome(order_id=order.id, delivered=False, error="ABORTED")
        outcomes.append(res)

    report = FanOutReport(status=status, outcomes=tuple(outcomes))
    logger.info("notifications dispatched", extra={"template_key": status.value, **report.as_dict()})
    return report


def notify_orders(
    orders: Sequence[Order],
    status: OrderStatus,
    channel: NotificationChannel,
    *,
    timeout: float = 5.0,
) -> FanOutReport:
    """Synchronous entry point for :func:`fan_out` used by the service layer."""
    return async_to_sync(fan_out)(orders, status, channel, timeout=timeout)
