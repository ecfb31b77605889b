import pytest
from django.db import DatabaseError


class DownConnection:
    def cursor(self):
        raise DatabaseError("down")


@pytest.mark.django_db
def test_health_ok(client):
    r = client.get("/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["notifications"] == {"configured": False}


@pytest.mark.django_db
def test_health_reports_configured_channel(client, settings):
    settings.USE_HTTP_ADAPTERS = True
    settings.NOTIFICATIONS_BASE_URL = "http://notifications:9003"
    r = client.get("/health/")
    assert r.json()["components"]["notifications"] == {"configured": True}


def test_health_503_when_db_down(client, monkeypatch):
    monkeypatch.setattr("apps.monitoring.api.connection", DownConnection())
    r = client.get("/health/")
    assert r.status_code == 503
    assert r.json()["components"]["db"] == {"ok": False}
