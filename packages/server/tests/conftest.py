"""
Shared fixtures: in-memory SQLite database, fake Redis, captured email.
"""

import os

os.environ.setdefault("DEBTBOOK_SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("DEBTBOOK_REQUIRE_EMAIL_CONFIRMATION", "false")
os.environ.setdefault("DEBTBOOK_LOG_FORMAT", "console")
os.environ.setdefault("DEBTBOOK_LOG_LEVEL", "warning")

from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from debtbook.core.auth import AuthenticatedUser, hash_password  # noqa: E402
from debtbook.core.config import get_settings  # noqa: E402
from debtbook.core.database import Database  # noqa: E402
from debtbook.models.organization import Organization  # noqa: E402
from debtbook.models.user import User  # noqa: E402
from debtbook.models.user_profile import UserProfile  # noqa: E402
from debtbook.services.membership import create_organization  # noqa: E402
from debtbook_shared.schemas.membership import CreatingOrg  # noqa: E402

PASSWORD = "correct-horse-battery"


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the revocation list."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def ping(self):
        return True

    async def aclose(self):
        pass


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    redis = FakeRedis()
    monkeypatch.setattr("debtbook.core.auth.get_redis", AsyncMock(return_value=redis))
    return redis


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Every email the app tries to send, in order."""
    sent = []

    async def fake_send(to, subject, text):
        sent.append({"to": to, "subject": subject, "text": text})
        return True

    monkeypatch.setattr("debtbook.services.email.send_email", fake_send)
    return sent


@pytest.fixture
async def db():
    database = Database.from_url("sqlite+aiosqlite:///:memory:")
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
async def session(db):
    async with db.session() as s:
        yield s


@pytest.fixture
async def app(db, fake_redis, monkeypatch):
    from debtbook.main import create_app

    monkeypatch.setattr("debtbook.main.get_redis", AsyncMock(return_value=fake_redis))
    return create_app(get_settings(), database=db)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Service-level helpers
# ---------------------------------------------------------------------------

async def _new_user(session, email: str) -> User:
    user = User(email=email, password_hash=hash_password(PASSWORD))
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
def new_user(session):
    async def _make(email: str) -> User:
        return await _new_user(session, email)
    return _make


@pytest.fixture
async def admin(session) -> AuthenticatedUser:
    """Founder and ADMIN of the org ``acme``."""
    user = await _new_user(session, "owner@example.com")
    profile = await create_organization(
        user, CreatingOrg(org_id="acme", org_name="acme", username="Owner"), session
    )
    org = await session.get(Organization, "acme")
    return AuthenticatedUser(user=user, org=org, profile=profile)


@pytest.fixture
def member(session, admin):
    """Factory for extra active members of ``acme``."""
    async def _make(email: str, role: str = "STAFF", username: str | None = None) -> AuthenticatedUser:
        user = await _new_user(session, email)
        profile = UserProfile(
            id=user.id,
            org_id="acme",
            org_name="acme",
            role=role,
            username=username or email.split("@")[0],
        )
        session.add(profile)
        await session.flush()
        return AuthenticatedUser(user=user, org=admin.org, profile=profile)
    return _make


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

async def api_sign_up(client, email: str, username: str, *, org_name=None, join_org_id=None) -> dict:
    """Sign up over HTTP and return the session body."""
    body = {"email": email, "password": PASSWORD, "username": username}
    if org_name:
        body["org_name"] = org_name
    if join_org_id:
        body["join_org_id"] = join_org_id
    resp = await client.post("/auth/sign-up", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def bearer(session_body: dict) -> dict:
    return {"Authorization": f"Bearer {session_body['token']}"}
