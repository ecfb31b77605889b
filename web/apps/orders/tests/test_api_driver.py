import pytest
from datetime import date
from uuid import uuid4

from apps.orders.domain import OrderStatus, StoreUnavailable
from apps.orders.models import OrderModel, StoreModel
from apps.orders.repository import DjangoOrderStore

DELIVERIES_URL = "/api/driver/deliveries/"
DELIVER_URL = "/api/orders/{oid}/deliver/"


@pytest.fixture
def ready_orders(make_order):
    store = DjangoOrderStore()

    def _ready(*totals, **kw):
        orders = [store.create(make_order(total=t, **kw)) for t in totals]
        return store.update_status([o.id for o in orders], OrderStatus.PENDING, OrderStatus.READY)

    return _ready


@pytest.mark.django_db
def test_deliveries_lists_ready_orders_for_the_day(client, ready_orders, make_order):
    StoreModel.objects.create(id="store-A", name="Downtown", location="5th Ave")
    ready = ready_orders("60.00", "40.00")
    ready_orders("100.00", day=date(2025, 12, 25))
    DjangoOrderStore().create(make_order(total="20.00"))

    r = client.get(DELIVERIES_URL, {"date": "2025-12-24"})

    assert r.status_code == 200
    body = r.json()
    assert body["date"] == "2025-12-24"
    assert [o["id"] for o in body["results"]] == [o.id for o in ready]
    assert {o["store_name"] for o in body["results"]} == {"Downtown"}
    assert {o["store_location"] for o in body["results"]} == {"5th Ave"}


@pytest.mark.django_db
def test_deliveries_rejects_bad_date(client):
    r = client.get(DELIVERIES_URL, {"date": "tomorrow"})
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_DATE"


@pytest.mark.django_db
def test_deliveries_defaults_to_today(client):
    r = client.get(DELIVERIES_URL)
    assert r.status_code == 200
    assert r.json()["results"] == []


@pytest.mark.django_db
def test_deliver_ready_order(client, ready_orders):
    order = ready_orders("100.00")[0]

    r = client.post(DELIVER_URL.format(oid=order.id))

    assert r.status_code == 200
    assert r.json()["status"] == "delivered"
    assert "notifications" not in r.json()
    assert OrderModel.objects.get(id=order.id).status == "delivered"


@pytest.mark.django_db
def test_deliver_twice_is_a_conflict(client, ready_orders):
    order = ready_orders("100.00")[0]
    client.post(DELIVER_URL.format(oid=order.id))

    r = client.post(DELIVER_URL.format(oid=order.id))

    assert r.status_code == 409
    assert r.json() == {"detail": "STATE_CONFLICT", "stale_ids": [order.id]}


@pytest.mark.django_db
def test_deliver_pending_order_is_a_conflict(client, make_order):
    order = DjangoOrderStore().create(make_order())
    r = client.post(DELIVER_URL.format(oid=order.id))
    assert r.status_code == 409
    assert OrderModel.objects.get(id=order.id).status == "pending"


@pytest.mark.django_db
def test_deliver_unknown_order_is_404(client):
    r = client.post(DELIVER_URL.format(oid=uuid4()))
    assert r.status_code == 404


@pytest.mark.django_db
def test_delivery_notification_when_enabled(client, settings, channel, ready_orders):
    settings.NOTIFY_ON_DELIVERY = True
    order = ready_orders("100.00")[0]

    r = client.post(DELIVER_URL.format(oid=order.id))

    assert r.json()["notifications"] == {"sent": 1, "failed": 0, "skipped": False}
    assert channel.sent[0]["template_key"] == "delivered"


@pytest.mark.django_db
def test_deliveries_store_lookup_failure_is_503(client, ready_orders, monkeypatch):
    ready_orders("100.00")

    def store_down(store_ids):
        raise StoreUnavailable("down")

    monkeypatch.setattr("apps.orders.views.stores_by_id", store_down)

    r = client.get(DELIVERIES_URL, {"date": "2025-12-24"})

    assert r.status_code == 503
    assert r.json()["detail"] == "STORE_UNAVAILABLE"


@pytest.mark.django_db
def test_deliveries_for_unknown_store_have_no_store_details(client, ready_orders):
    ready_orders("100.00", store="store-Z")

    result = client.get(DELIVERIES_URL, {"date": "2025-12-24"}).json()["results"][0]

    assert result["store_name"] is None and result["store_location"] is None
