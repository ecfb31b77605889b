import itertools
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.orders.adapters import InMemoryOrderStore, RecordingNotificationChannel
from apps.orders.domain import LineItem, Order

CHRISTMAS_EVE = date(2025, 12, 24)
_BASE_TIME = datetime(2025, 12, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.BATCH_AUTO_RELEASE = False
    settings.NOTIFY_ON_DELIVERY = False
    settings.BATCH_RELEASE_THRESHOLD = Decimal("100.00")
    settings.BATCH_BOARD_MAX_AGE_SECS = 0
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    yield
    from apps.orders.providers import reset_batch_board

    reset_batch_board()


@pytest.fixture
def make_order():
    """Factory for pending domain orders with strictly increasing created_at."""
    seq = itertools.count()

    def _make(total="40.00", day=CHRISTMAS_EVE, store="store-A", email=None, name="Asha", **kw):
        n = next(seq)
        return Order(
            id=kw.pop("id", f"00000000-0000-4000-8000-{n:012d}"),
            customer_name=name,
            customer_email=email or f"customer{n}@example.com",
            delivery_date=day,
            store_id=store,
            items=(LineItem("prod-1", Decimal(total), 1),),
            total=Decimal(total),
            created_at=_BASE_TIME + timedelta(minutes=n),
            **kw,
        )

    return _make


@pytest.fixture
def memory_store():
    return InMemoryOrderStore()


@pytest.fixture
def channel(monkeypatch):
    """Recording channel wired into the providers used by the views."""
    ch = RecordingNotificationChannel()
    monkeypatch.setattr("apps.orders.providers.get_notification_channel", lambda: ch, raising=True)
    return ch
