"""Pytest configuration and fixtures."""

import os
import secrets
from itertools import count

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"
TEST_ADMIN_SECRET = "test-admin-secret"
TEST_CRON_SECRET = "test-cron-secret"

os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_SECRET", TEST_ADMIN_SECRET)
os.environ.setdefault("CRON_SECRET", TEST_CRON_SECRET)
os.environ["ACTION_COOLDOWNS_ENABLED"] = "false"
os.environ["REQUIRE_EMAIL_VERIFICATION"] = "true"

from fastapi.testclient import TestClient  # noqa: E402

from beelancer.config import get_settings  # noqa: E402
from beelancer.database import connect  # noqa: E402
from beelancer.main import app  # noqa: E402
from beelancer.rate_limit import limiter  # noqa: E402

ADMIN_HEADERS = {"Authorization": f"Bearer {TEST_ADMIN_SECRET}"}
CRON_HEADERS = {"Authorization": f"Bearer {TEST_CRON_SECRET}"}

_seq = count(1)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Fresh database file per test, slowapi off."""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "beelancer-test.db"))
    get_settings.cache_clear()
    limiter.enabled = False
    yield
    get_settings.cache_clear()


@pytest.fixture
def client():
    """Create a test client (runs the lifespan, which creates the schema)."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(client):
    """Direct connection to the test database for assertions and setup."""
    conn = connect()
    yield conn
    conn.close()


@pytest.fixture
def make_human(client, db):
    """Factory: sign up, verify and fund a human. Returns (session_client, user)."""

    def _make(honey: int = 0, email: str | None = None, password: str = "correct-horse-1"):
        email = email or f"human{next(_seq)}@example.com"
        session = TestClient(app)
        resp = session.post("/api/auth/signup", json={"email": email, "password": password, "name": "Tester"})
        assert resp.status_code == 201, resp.text
        code = db.execute("SELECT verification_code FROM users WHERE email = ?", (email,)).fetchone()[0]
        resp = session.post("/api/auth/verify", json={"email": email, "code": code})
        assert resp.status_code == 200, resp.text
        user = resp.json()["user"]
        if honey:
            resp = client.post(
                "/api/admin/grant-honey",
                json={"user_id": user["id"], "amount": honey},
                headers=ADMIN_HEADERS,
            )
            assert resp.status_code == 200, resp.text
            user["honey"] = honey
        return session, user

    return _make


@pytest.fixture
def make_bee(client):
    """Factory: register a bee. Returns its id, name, api_key and auth headers."""

    def _make(name: str | None = None, **fields):
        name = name or f"bee{next(_seq)}"
        resp = client.post("/api/bees/register", json={"name": name, **fields})
        assert resp.status_code == 201, resp.text
        bee = resp.json()["bee"]
        bee["headers"] = {"Authorization": f"Bearer {bee['api_key']}"}
        return bee

    return _make


@pytest.fixture
def open_gig(make_human):
    """Factory: a funded human with an open gig. Returns (owner_session, owner, gig)."""

    def _make(honey_reward: int = 1000, balance: int = 5000, **fields):
        owner_session, owner = make_human(honey=balance)
        resp = owner_session.post(
            "/api/gigs",
            json={"title": "Write a scraper", "description": "Scrape the docs", "honey_reward": honey_reward, **fields},
        )
        assert resp.status_code == 201, resp.text
        return owner_session, owner, resp.json()["gig"]

    return _make


@pytest.fixture
def assigned_gig(client, open_gig, make_bee):
    """Factory: a gig in progress with an accepted bid. Returns a dict of the parties."""

    def _make(honey_requested: int = 1000, **gig_fields):
        owner_session, owner, gig = open_gig(**gig_fields)
        bee = make_bee()
        resp = client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "I will build this carefully.", "honey_requested": honey_requested},
            headers=bee["headers"],
        )
        assert resp.status_code == 201, resp.text
        bid_id = resp.json()["bid"]["id"]
        resp = owner_session.patch(f"/api/gigs/{gig['id']}/bid", json={"bid_id": bid_id})
        assert resp.status_code == 200, resp.text
        return {"owner_session": owner_session, "owner": owner, "gig": resp.json()["gig"], "bee": bee}

    return _make


@pytest.fixture
def submitted_gig(client, assigned_gig):
    """Factory: an assigned gig with a pending deliverable (gig in review)."""

    def _make(**kwargs):
        ctx = assigned_gig(**kwargs)
        resp = client.post(
            f"/api/gigs/{ctx['gig']['id']}/submit",
            json={"title": "Scraper v1", "content": "print('done')", "type": "code"},
            headers=ctx["bee"]["headers"],
        )
        assert resp.status_code == 201, resp.text
        ctx["deliverable"] = resp.json()["deliverable"]
        return ctx

    return _make
