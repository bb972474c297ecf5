"""
tests/conftest.py -- Shared test fixtures for the note service test suite.

This module provides:
  - RecordingEmailSender: in-memory EmailSender; tests read OTP codes from it
  - FakeIdentityVerifier: maps assertion strings to FederatedProfile objects
  - account_store / note_store: fresh isolated stores per test
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true               -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4          -- minimum cost, keeps hashing fast in tests
  RATE_LIMIT_ENABLED=false -- repeated logins from one client are not throttled
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set these before any auth/core import so the cached Settings
# instance sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import FederatedProfile
from auth.notifications import OutgoingEmail
from auth.store import AccountStore
from core.errors import EmailSendFailed, InvalidFederatedToken
from notes.store import NoteStore

_CODE_RE = re.compile(r"\b(\d{6})\b")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class RecordingEmailSender:
    """EmailSender that keeps every message in memory.

    Set fail=True to make every send raise EmailSendFailed, the same way
    SmtpEmailSender reports a refused connection.
    """

    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []
        self.fail = False

    def send(self, message: OutgoingEmail) -> None:
        if self.fail:
            raise EmailSendFailed()
        self.sent.append(message)

    def to(self, recipient: str) -> list[OutgoingEmail]:
        return [m for m in self.sent if m.recipient == recipient]

    def last_code(self, recipient: str) -> str:
        """Return the six-digit code from the newest OTP email to recipient."""
        for message in reversed(self.to(recipient)):
            if "Verification" in message.subject:
                match = _CODE_RE.search(message.text_body)
                if match:
                    return match.group(1)
        raise AssertionError(f"No verification code was emailed to {recipient}")


class FakeIdentityVerifier:
    """IdentityVerifier that accepts only assertions registered in profiles."""

    def __init__(self) -> None:
        self.profiles: dict[str, FederatedProfile] = {}

    def add(self, assertion: str, subject: str, email: str, name: str) -> str:
        self.profiles[assertion] = FederatedProfile(subject=subject, email=email, name=name)
        return assertion

    def verify(self, assertion: str) -> FederatedProfile:
        try:
            return self.profiles[assertion]
        except KeyError:
            raise InvalidFederatedToken() from None


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[AccountStore, NoteStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   and individual tests don't share state.
    """
    accounts = AccountStore(db_url=_memory_url(f"test_accounts_{db_suffix}"))
    notes = NoteStore(db_url=_memory_url(f"test_notes_{db_suffix}"))
    return accounts, notes


def _patch_lifespan(account_store, note_store, email_sender, identity_verifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores and fakes into app.state so TestClient routes see
    isolated in-memory DBs and never open SMTP or fetch Google keys.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = account_store
        app.state.note_store = note_store
        app.state.email_sender = email_sender
        app.state.identity_verifier = identity_verifier
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh stores per test
# ---------------------------------------------------------------------------


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    store = AccountStore(db_url=_memory_url(f"unit_accounts_{uuid.uuid4().hex}"))
    yield store
    store.close()


@pytest.fixture
def note_store() -> Generator[NoteStore, None, None]:
    store = NoteStore(db_url=_memory_url(f"unit_notes_{uuid.uuid4().hex}"))
    yield store
    store.close()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def identity_verifier() -> FakeIdentityVerifier:
    return FakeIdentityVerifier()


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


class ApiHarness:
    """What api_client yields: the client plus the fakes wired behind it."""

    def __init__(self, client: TestClient, email_sender: RecordingEmailSender, verifier: FakeIdentityVerifier,
                 account_store: AccountStore, note_store: NoteStore) -> None:
        self.client = client
        self.email_sender = email_sender
        self.verifier = verifier
        self.account_store = account_store
        self.note_store = note_store

    def register_and_verify(self, email: str, password: str = "secret1", name: str = "Test User") -> str:
        """Run register -> verify-otp and return the bearer token."""
        resp = self.client.post("/api/v1/auth/register", json={"email": email, "password": password, "name": name})
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        code = self.email_sender.last_code(email.lower())
        resp = self.client.post("/api/v1/auth/verify-otp", json={"email": email, "otp": code})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        return resp.json()["token"]

    @staticmethod
    def auth(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over the real FastAPI app.

    The app runs with a patched lifespan so tests hit real route handlers
    but use isolated in-memory stores, a recording email sender and a fake
    Google verifier. base_url uses localhost because TrustedHostMiddleware
    rejects TestClient's default "testserver" host.
    """
    suffix = f"{request.module.__name__.rsplit('.', 1)[-1]}_{uuid.uuid4().hex[:8]}"
    account_store, note_store = _make_test_stores(suffix)
    sender = RecordingEmailSender()
    verifier = FakeIdentityVerifier()

    app.router.lifespan_context = _patch_lifespan(account_store, note_store, sender, verifier)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiHarness(client, sender, verifier, account_store, note_store)

    note_store.close()
    account_store.close()
