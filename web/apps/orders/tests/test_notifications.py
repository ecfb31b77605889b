import asyncio
import logging

from apps.orders.adapters import NullNotificationChannel, RecordingNotificationChannel
from apps.orders.domain import OrderStatus
from apps.orders.notifications import fan_out, notify_orders


def test_one_message_per_order(make_order):
    orders = [make_order(name=n) for n in ("Asha", "Bruno", "Chen")]
    ch = RecordingNotificationChannel()

    report = notify_orders(orders, OrderStatus.READY, ch)

    assert report.sent == 3 and report.failed == 0 and report.skipped is False
    assert [m["context"]["customer_name"] for m in sorted(ch.sent, key=lambda m: m["to"])] == [
        "Asha",
        "Bruno",
        "Chen",
    ]


def test_failure_does_not_cancel_siblings(make_order, caplog):
    orders = [make_order(), make_order(), make_order()]
    ch = RecordingNotificationChannel(fail_for={orders[0].customer_email})

    with caplog.at_level(logging.WARNING, logger="apps.orders.notifications"):
        report = notify_orders(orders, OrderStatus.READY, ch)

    assert report.sent == 2
    assert report.failed_order_ids == [orders[0].id]
    assert report.outcomes[0].error == "CHANNEL_UNREACHABLE"
    assert any(r.getMessage() == "notification dispatch failed" for r in caplog.records)


def test_rejected_message_counts_as_failed(make_order):
    order = make_order()
    ch = RecordingNotificationChannel(reject_for={order.customer_email})

    report = notify_orders([order], OrderStatus.READY, ch)

    assert report.sent == 0
    assert report.outcomes[0].error == "REJECTED"


def test_slow_channel_times_out_per_message(make_order):
    ch = RecordingNotificationChannel(delay=0.5)

    report = notify_orders([make_order(), make_order()], OrderStatus.READY, ch, timeout=0.05)

    assert report.failed == 2
    assert {o.error for o in report.outcomes} == {"TIMEOUT"}
    assert ch.sent == []


def test_unconfigured_channel_is_skipped(make_order):
    report = notify_orders([make_order()], OrderStatus.READY, NullNotificationChannel())
    assert report.skipped is True
    assert report.as_dict() == {"sent": 0, "failed": 0, "skipped": True}


def test_fan_out_can_be_awaited_directly(make_order):
    ch = RecordingNotificationChannel()
    report = asyncio.run(fan_out([make_order()], OrderStatus.DELIVERED, ch))
    assert report.sent == 1
    assert ch.sent[0]["template_key"] == "delivered"


def test_empty_order_list_sends_nothing():
    ch = RecordingNotificationChannel()
    report = notify_orders([], OrderStatus.READY, ch)
    assert report.outcomes == () and ch.sent == []
