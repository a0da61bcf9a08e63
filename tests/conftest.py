"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of villagerdb.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from villagerdb.config import VillagerConfig  # noqa: E402
from villagerdb.database.models import Base  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all VillagerDB tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def config(tmp_path) -> VillagerConfig:
    return VillagerConfig(
        site_name="VillagerDB Test",
        search_index_dir=str(tmp_path / "search"),
        delta_batch_size=100,
    )


@pytest.fixture
def search_store(config: VillagerConfig):
    from villagerdb.search.store import SearchIndexStore

    return SearchIndexStore(config.search_index_dir)


@pytest.fixture
def indexer(db_engine, search_store, config):
    from villagerdb.services.indexer import TownIndexer

    return TownIndexer(db_engine, search_store, config)


def make_token(sub: str = "alice", *, is_admin: bool = False) -> str:
    """Create a signed JWT.  Usable as a factory from any test module."""
    import jwt

    from villagerdb.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub, "is_admin": is_admin}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def admin_token():
    return make_token("99999", is_admin=True)


@pytest.fixture
def user_token():
    return make_token("alice")


@pytest.fixture
def client(db_engine, search_store, config):
    """FastAPI TestClient wired to the in-memory DB and a tmp search store."""
    from fastapi.testclient import TestClient

    from villagerdb.api.deps import get_config, get_engine, get_search_store
    from villagerdb.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_search_store] = lambda: search_store
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def add_town(engine, username="alice", town_id="my-town", **overrides):
    """Create a town through the service (so its change event is written)."""
    from villagerdb.services import town_service

    fields = {
        "town_name": "My Town",
        "town_address": "DA-1234-5678-9012",
        "town_description": "A cozy island with cherry blossoms",
        "town_tags": ["cozy", "spring"],
        "image": None,
    }
    fields.update(overrides)
    return town_service.create_town(engine, username, town_id, **fields)
