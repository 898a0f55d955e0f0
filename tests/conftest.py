"""
tests/conftest.py -- Shared test fixtures for authkeep unit and integration tests.

This module provides:
  - RecordingMailer / RecordingAuditSink / FrozenClock: in-process fakes for
    the collaborators the auth services depend on
  - store / service: an in-memory SQLCredentialStore and an AuthService wired
    to the fakes, fresh for every test
  - make_user: creates a verified user directly in the store
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real FastAPI app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit-test stores stay on one thread, so :memory: is fine.

Environment must be set before any auth/core import: DEBUG so get_settings()
auto-generates SECRET_KEY, a low bcrypt cost to keep the suite fast, rate
limits off, and "testserver" (TestClient's Host header) as an allowed host.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import -- get_settings() is cached at first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import AuditEvent, Role, User
from auth.service import AuthService
from auth.store import SQLCredentialStore
from auth.tokens import hash_password
from core.config import get_settings
from mailer.smtp import MailDeliveryError

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass
class SentMail:
    kind: str  # "verification" or "password_reset"
    email: str
    token: str


class RecordingMailer:
    """Mailer that keeps every message in memory. Set fail=True to simulate an SMTP outage."""

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.fail = False

    def send_verification(self, email: str, raw_token: str) -> None:
        self._deliver("verification", email, raw_token)

    def send_password_reset(self, email: str, raw_token: str) -> None:
        self._deliver("password_reset", email, raw_token)

    def _deliver(self, kind: str, email: str, token: str) -> None:
        if self.fail:
            raise MailDeliveryError("SMTP unavailable")
        self.sent.append(SentMail(kind, email, token))

    def last_token(self, email: str, kind: str = "verification") -> str:
        for mail in reversed(self.sent):
            if mail.email == email and mail.kind == kind:
                return mail.token
        raise AssertionError(f"no {kind} mail sent to {email}")


class RecordingAuditSink:
    """Audit sink that records events synchronously."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def enqueue(self, action, *, user_id=None, ip=None, user_agent=None, metadata=None) -> None:
        self.events.append(
            AuditEvent(action=action, user_id=user_id, ip=ip, user_agent=user_agent, metadata=metadata or {})
        )

    def actions(self, user_id: str | None = None) -> list[str]:
        return [e.action for e in self.events if user_id is None or e.user_id == user_id]


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh store and service per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[SQLCredentialStore, None, None]:
    s = SQLCredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def service(store, mailer, audit, clock) -> AuthService:
    return AuthService(store, mailer, audit, get_settings(), clock)


@pytest.fixture
def make_user(store):
    """Return a factory that inserts a verified user and returns (user, password)."""

    def _make(email: str = "alice@example.com", password: str = "s3cret-pass", **fields) -> tuple[User, str]:
        fields.setdefault("is_email_verified", True)
        fields.setdefault("role", Role.CUSTOMER.value)
        user = store.create_user(User(email=email, password_hash=hash_password(password), **fields))
        return user, password

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> SQLCredentialStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return SQLCredentialStore(f"sqlite:///file:test_authkeep_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: SQLCredentialStore, mailer: RecordingMailer, audit: RecordingAuditSink):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and fakes into app.state so TestClient routes see an
    isolated DB and no mail leaves the process. The purge_task is a
    long-sleeping coroutine so shutdown's .cancel() has a real task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.mailer = mailer
        app.state.audit = audit
        app.state.auth = AuthService(store, mailer, audit, get_settings())
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, SQLCredentialStore, RecordingMailer, RecordingAuditSink], None, None]:
    """Yield (client, store, mailer, audit) for API integration tests.

    Module-scoped: state persists across the tests of one module, so each
    test uses its own email addresses. follow_redirects=False so tests can
    assert on redirect locations.
    """
    store = _make_test_store(os.urandom(4).hex())
    mailer = RecordingMailer()
    audit = RecordingAuditSink()

    app.router.lifespan_context = _patch_lifespan(store, mailer, audit)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, store, mailer, audit

    store.close()
