import hashlib
import hmac
import os
import time
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "enrichdesk_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("LEDGER_MAX_RETRIES", "50")

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


@pytest.fixture(autouse=True)
def settings_env(monkeypatch, tmp_path):
    """Per-test storage root; settings are re-read after every override."""
    from enrichdesk.core.config import get_settings
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_PATH", str(tmp_path / "storage"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def enqueued(monkeypatch) -> list[tuple[str, dict]]:
    """Capture notification tasks instead of talking to Redis."""
    from enrichdesk.services import notifier
    calls: list[tuple[str, dict]] = []

    async def fake_enqueue(task: str, **kwargs) -> None:
        calls.append((task, kwargs))

    monkeypatch.setattr(notifier, "_enqueue", fake_enqueue)
    return calls


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory MongoDB bound to every document model."""
    from enrichdesk.db.init import init_db
    database = AsyncMongoMockClient()["enrichdesk_test"]
    await init_db(database=database)
    yield database


@pytest_asyncio.fixture
async def make_user(db):
    from enrichdesk.models.user import ROLE_USER, User

    async def _make(email: str = "user@example.com", role: str = ROLE_USER, name: str = "Test User") -> User:
        user = User(google_sub=f"sub-{uuid4().hex}", email=email, name=name, role=role)
        await user.insert()
        return user

    return _make


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from enrichdesk.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def login():
    """Attach a valid session cookie for a user to a client."""
    from enrichdesk.core.security import create_session_cookie
    from enrichdesk.deps import SESSION_COOKIE_NAME
    from enrichdesk.services.users import session_payload_for_user

    def _login(client: AsyncClient, user) -> None:
        client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie(session_payload_for_user(user)))

    return _login


@pytest.fixture
def sign_webhook():
    """Build a Stripe-Signature header (`t=<ts>,v1=<hmac-sha256 of "<ts>.<payload>">`)."""

    def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        signature = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
        return f"t={ts},v1={signature}"

    return _sign
