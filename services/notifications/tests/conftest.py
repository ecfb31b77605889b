import os

# configure before the service modules build their engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("RESEND_API_KEY", None)

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from main import app, get_mailer  # noqa: E402
from repo import Base, engine  # noqa: E402


class FakeMailer:
    """Mailer double recording every e-mail; ``fail`` makes sends raise."""

    configured = True

    def __init__(self):
        self.outbox = []
        self.fail = False

    def send(self, email):
        if self.fail:
            raise httpx.ConnectError("provider down")
        self.outbox.append(email)
        return f"msg-{len(self.outbox)}"


@pytest.fixture
def api():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    Base.metadata.drop_all(engine)


@pytest.fixture
def mailer():
    fake = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: fake
    return fake
