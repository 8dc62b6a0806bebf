"""
tests/conftest.py -- Shared test fixtures for PolicyPulse integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for snapshot history
    and the definition cache
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from cache.store import DefinitionCache
from history.store import SnapshotStore

# Route limits are exercised by slowapi itself; a module posting a dozen
# assessments must not trip them.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[SnapshotStore, DefinitionCache]:
    """Create isolated stores for one test module.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    history_url = f"sqlite:///file:test_history_{db_suffix}?mode=memory&cache=shared&uri=true"
    history = SnapshotStore(db_url=history_url)
    definitions = DefinitionCache(":memory:")
    return history, definitions


def _patch_lifespan(history: SnapshotStore, definitions: DefinitionCache, catalog=None):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.history = history
        app.state.definitions = definitions
        app.state.catalog = catalog
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient wired to isolated in-memory stores.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers. base_url uses localhost so requests pass
    TrustedHostMiddleware.
    """
    history, definitions = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])

    app.router.lifespan_context = _patch_lifespan(history, definitions)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client

    definitions.close()
    history.close()
