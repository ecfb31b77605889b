"""API tests for the operator batch view and batch release."""
import pytest

from apps.orders.models import OrderModel
from apps.orders.repository import DjangoOrderStore

BATCHES_URL = "/api/batches/"
RELEASE_URL = "/api/batches/release/"


@pytest.fixture
def seed(make_order):
    store = DjangoOrderStore()

    def _seed(*totals, **kw):
        return [store.create(make_order(total=t, **kw)) for t in totals]

    return _seed


def release(client, orders, day="2025-12-24", store_id="store-A"):
    return client.post(
        RELEASE_URL,
        data={"delivery_date": day, "store_id": store_id, "order_ids": [o.id for o in orders]},
        content_type="application/json",
    )


@pytest.mark.django_db
def test_batches_lists_pending_batches_with_eligibility(client, seed):
    a = seed("40.00", "35.00")
    b = seed("105.00", store="store-B")

    r = client.get(BATCHES_URL)

    assert r.status_code == 200
    results = r.json()["results"]
    assert [(x["store_id"], x["eligible"]) for x in results] == [("store-A", False), ("store-B", True)]
    assert results[0] == {
        "delivery_date": "2025-12-24",
        "store_id": "store-A",
        "order_ids": [o.id for o in a],
        "order_count": 2,
        "total_value": "75.00",
        "threshold": "100.00",
        "eligible": False,
        "remaining": "25.00",
    }
    assert results[1]["order_ids"] == [b[0].id]


@pytest.mark.django_db
def test_threshold_follows_settings(client, seed, settings):
    from decimal import Decimal

    settings.BATCH_RELEASE_THRESHOLD = Decimal("50.00")
    seed("60.00")
    result = client.get(BATCHES_URL).json()["results"][0]
    assert result["threshold"] == "50.00" and result["eligible"] is True


@pytest.mark.django_db
def test_release_marks_orders_ready_and_reports_notifications(client, seed, channel):
    orders = seed("40.00", "35.00", "30.00")

    r = release(client, orders)

    assert r.status_code == 200
    body = r.json()
    assert [o["status"] for o in body["orders"]] == ["ready"] * 3
    assert body["notifications"] == {"sent": 3, "failed": 0, "skipped": False}
    assert OrderModel.objects.filter(status="ready").count() == 3
    assert client.get(BATCHES_URL).json()["results"] == []


@pytest.mark.django_db
def test_release_succeeds_when_notifications_fail(client, seed, channel):
    orders = seed("60.00", "50.00")
    channel.fail_for = {orders[0].customer_email}

    r = release(client, orders)

    assert r.status_code == 200
    assert r.json()["notifications"] == {"sent": 1, "failed": 1, "skipped": False}
    assert OrderModel.objects.filter(status="ready").count() == 2


@pytest.mark.django_db
def test_release_without_notification_channel_is_skipped(client, seed):
    r = release(client, seed("100.00"))
    assert r.status_code == 200
    assert r.json()["notifications"]["skipped"] is True


@pytest.mark.django_db
def test_second_release_is_a_conflict(client, seed, channel):
    orders = seed("70.00", "30.00")
    assert release(client, orders).status_code == 200

    r = release(client, orders)

    assert r.status_code == 409
    assert r.json()["detail"] == "STATE_CONFLICT"
    assert r.json()["stale_ids"] == sorted(o.id for o in orders)
    assert len(channel.sent) == 2


@pytest.mark.django_db
def test_release_below_threshold_is_422(client, seed):
    r = release(client, seed("40.00", "35.00"))
    assert r.status_code == 422
    assert r.json() == {"detail": "BELOW_THRESHOLD", "remaining": "25.00"}
    assert OrderModel.objects.filter(status="pending").count() == 2


@pytest.mark.django_db
def test_release_with_wrong_key_is_400(client, seed):
    r = release(client, seed("120.00"), store_id="store-B")
    assert r.status_code == 400
    assert r.json()["detail"] == "BATCH_KEY_MISMATCH"


@pytest.mark.django_db
def test_release_requires_order_ids(client):
    r = client.post(
        RELEASE_URL,
        data={"delivery_date": "2025-12-24", "store_id": "store-A", "order_ids": []},
        content_type="application/json",
    )
    assert r.status_code == 400


@pytest.mark.django_db
def test_new_order_after_release_starts_a_new_batch(client, seed):
    first = seed("100.00")
    release(client, first)
    late = seed("10.00")

    results = client.get(BATCHES_URL).json()["results"]
    assert [x["order_ids"] for x in results] == [[late[0].id]]


@pytest.mark.django_db
def test_batches_view_is_served_from_the_shared_board(client, seed, settings, django_capture_on_commit_callbacks):
    from apps.orders import providers

    settings.BATCH_BOARD_MAX_AGE_SECS = 60
    seed("40.00")
    assert client.get(BATCHES_URL).json()["results"][0]["total_value"] == "40.00"
    board = providers.get_batch_board()

    with django_capture_on_commit_callbacks(execute=True):
        seed("25.00")

    assert client.get(BATCHES_URL).json()["results"][0]["total_value"] == "65.00"
    assert providers.get_batch_board() is board


@pytest.mark.django_db
def test_batch_board_is_rebuilt_when_threshold_changes(settings):
    from decimal import Decimal

    from apps.orders import providers

    first = providers.get_batch_board()
    settings.BATCH_RELEASE_THRESHOLD = Decimal("50.00")
    second = providers.get_batch_board()

    assert second is not first
    assert second.policy.threshold == Decimal("50.00")
