"""
tests/conftest.py -- Shared test fixtures for the mini-app auth tests.

This module provides:
  - make_init_data: factory producing correctly signed Telegram init data
  - memory_store: single-threaded in-memory IdentityStore for unit tests
  - api_client: TestClient against a production-mode AuthConfig
  - unverified_client: TestClient against AuthConfig.unauthenticated_test_mode()

Design: API fixtures use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

The signing helper below deliberately reimplements the Telegram algorithm
with hmac/hashlib instead of importing auth.launch_data, so the tests check
the production code against an independent computation.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, install_auth_services
from auth.config import AuthConfig
from auth.store import IdentityStore

BOT_TOKEN = "123456789:AAEhBOweik6ad9r_QXMENQjcrGbqCr4K-ra"
SIGNING_SECRET = "test-signing-secret-0123456789abcdef0123"
AUTH_DATE = "1700000000"

# ---------------------------------------------------------------------------
# Launch-data signing
# ---------------------------------------------------------------------------


def reference_signature(pairs: list[tuple[str, str]], bot_token: str) -> str:
    """Telegram's algorithm, written out longhand."""
    lines = sorted(f"{k}={v}" for k, v in pairs if k != "hash")
    secret = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    return hmac.new(secret, "\n".join(lines).encode(), hashlib.sha256).hexdigest()


def build_init_data(
    user: dict,
    bot_token: str = BOT_TOKEN,
    auth_date: str = AUTH_DATE,
    extra: list[tuple[str, str]] | None = None,
    signed: bool = True,
) -> str:
    pairs = [("query_id", "AAHdF6IQAAAAAN0XohDhrOrc"), ("user", json.dumps(user, separators=(",", ":")))]
    pairs.append(("auth_date", auth_date))
    pairs.extend(extra or [])
    if signed:
        pairs.append(("hash", reference_signature(pairs, bot_token)))
    return urlencode(pairs)


@pytest.fixture
def make_init_data() -> Callable[..., str]:
    """Return build_init_data so tests can produce signed payloads."""
    return build_init_data


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Start every test with empty rate-limit counters."""
    limiter.reset()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store() -> Generator[IdentityStore, None, None]:
    store = IdentityStore("sqlite:///:memory:")
    yield store
    store.close()


def _make_test_store(db_suffix: str) -> IdentityStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'testmode').
    """
    return IdentityStore(f"sqlite:///file:test_identity_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(config: AuthConfig, store: IdentityStore):
    """Return an async context manager that replaces the real lifespan.

    The real lifespan reads Settings and refuses to start without a bot
    token; tests inject the config and store directly instead.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_auth_services(app, config, store, request_timeout_seconds=5.0)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient whose app verifies launch-data signatures."""
    store = _make_test_store("api")
    config = AuthConfig.production(signing_secret=SIGNING_SECRET, bot_token=BOT_TOKEN)
    app.router.lifespan_context = _patch_lifespan(config, store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()


@pytest.fixture(scope="module")
def unverified_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient whose app runs in unauthenticated test mode."""
    store = _make_test_store("testmode")
    config = AuthConfig.unauthenticated_test_mode(signing_secret=SIGNING_SECRET)
    app.router.lifespan_context = _patch_lifespan(config, store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()
