from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.clock import get_clock
from app.core.db import get_db, get_session_factory
from app.main import app
from app.models.base import Base
from app.models import entities  # noqa: F401
from app.services.delivery import Delivered, get_email_dispatcher
from app.services.identity_provider import get_identity_resolver
from app.services.realtime import RealtimeBroker, get_broker


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent = []

    def send_invitation(self, message):
        self.sent.append(message)
        return Delivered(attempts=1)


class StaticResolver:
    def __init__(self, emails: dict[str, str] | None = None) -> None:
        self.emails = dict(emails or {})
        self.calls: list[list[str]] = []

    async def resolve_emails(self, user_ids):
        self.calls.append(list(user_ids))
        return {user_id: self.emails[user_id] for user_id in user_ids if user_id in self.emails}


def headers_for(user_id: str, email: str) -> dict[str, str]:
    return {"X-Forwarded-User": user_id, "X-Forwarded-Email": email}


ALICE = headers_for("u-alice", "alice@example.com")
BOB = headers_for("u-bob", "bob@example.com")
CAROL = headers_for("u-carol", "carol@example.com")
DAVE = headers_for("u-dave", "dave@example.com")


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def clock():
    frozen = FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    app.dependency_overrides[get_clock] = lambda: frozen
    yield frozen
    app.dependency_overrides.pop(get_clock, None)


@pytest.fixture
def broker():
    instance = RealtimeBroker()
    app.dependency_overrides[get_broker] = lambda: instance
    yield instance
    app.dependency_overrides.pop(get_broker, None)


@pytest.fixture
def dispatcher():
    instance = RecordingDispatcher()
    app.dependency_overrides[get_email_dispatcher] = lambda: instance
    yield instance
    app.dependency_overrides.pop(get_email_dispatcher, None)


@pytest.fixture
def resolver():
    instance = StaticResolver()
    app.dependency_overrides[get_identity_resolver] = lambda: instance
    yield instance
    app.dependency_overrides.pop(get_identity_resolver, None)


@pytest.fixture
def client(clock, broker, dispatcher, resolver):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def family_id(client):
    resp = client.post("/v1/families", json={"name": "Household"}, headers=ALICE)
    assert resp.status_code == 200
    return resp.json()["id"]


def invite_and_accept(client, family_id: int, headers: dict[str, str], role: str = "editor") -> dict:
    email = headers["X-Forwarded-Email"]
    invite = client.post(f"/v1/families/{family_id}/invitations", json={"email": email, "role": role}, headers=ALICE)
    assert invite.status_code == 200, invite.text
    accepted = client.patch(f"/v1/invitations/{invite.json()['id']}", json={"action": "accept"}, headers=headers)
    assert accepted.status_code == 200, accepted.text
    return accepted.json()
