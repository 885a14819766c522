"""
tests/conftest.py -- Shared test fixtures for BreachTracker tests.

This module provides:
  - TODAY: the fixed "today" every repository fixture uses, so derived
    response times of the seed incidents are deterministic
  - repo: in-memory IncidentRepository (no store) loaded with the seed set
  - store: SnapshotStore on a private in-memory SQLite database
  - api_client: TestClient wired to a file-backed store in a temp directory
  - reset_rate_limits: autouse, clears the shared slowapi counters per test

Design: the API fixture uses a SQLite file rather than :memory: because
TestClient runs sync route handlers in a thread pool, and a plain :memory:
database is private to the connection that created it.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import date

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from core.analytics import SqliteEvaluator
from incidents.repository import IncidentRepository
from storage.store import SnapshotStore

TODAY = date(2025, 12, 20)


def fixed_today() -> date:
    return TODAY


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo() -> IncidentRepository:
    """Seeded repository with no persistence and today pinned to TODAY."""
    return IncidentRepository(store=None, today=fixed_today)


@pytest.fixture
def store() -> Generator[SnapshotStore, None, None]:
    s = SnapshotStore("sqlite:///:memory:", key="test-state")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_rate_limits() -> None:
    """Clear the shared limiter counters so every test starts with a full allowance."""
    limiter.reset()


def _patch_lifespan(store: SnapshotStore, repository: IncidentRepository):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, repository and evaluator into app.state so routes
    never touch the configured production database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.repository = repository
        app.state.evaluator = SqliteEvaluator()
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with an isolated, seeded state database.

    Module-scoped for speed: tests in one module share state, so each test
    creates the incidents it asserts on rather than relying on counts.
    base_url uses localhost so TrustedHostMiddleware accepts the requests.
    """
    db_path = tmp_path_factory.mktemp("state") / "breachtracker.db"
    store = SnapshotStore(f"sqlite:///{db_path}", key="api-test")
    repository = IncidentRepository(store, today=fixed_today)
    app.router.lifespan_context = _patch_lifespan(store, repository)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client

    store.close()
