"""Pytest configuration and fixtures for humanmark tests.

Test isolation strategy:
- DATABASE_URL defaults to a throwaway SQLite file built from the models;
  point it at Postgres to run the same suite against the production dialect
  on a schema built by the Alembic migrations
- Services commit, so flows are deleted after every test instead of rolled back
- Tests needing several independent sessions use session_factory directly
- Redis-backed code runs against the in-memory double in tests.helpers
"""

import os
import sys
import tempfile
from collections.abc import Generator
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

if not os.environ.get("DATABASE_URL"):
    _db_dir = Path(tempfile.mkdtemp(prefix="humanmark-tests-"))
    os.environ["DATABASE_URL"] = f"sqlite:///{_db_dir / 'humanmark.db'}"
os.environ.setdefault("HUMANMARK_ENV", "test")

import pytest
from alembic import command
from sqlalchemy import Engine, create_engine, delete
from sqlalchemy.orm import Session, sessionmaker

from humanmark.config import Settings, clear_settings_cache
from humanmark.db.models import Base, Flow
from humanmark.db.session import create_session_factory
from humanmark.services.events import clear_subscribers, subscribe
from humanmark.services.rate_limit import set_rate_limiter
from tests.helpers import (
    InMemoryRedis,
    alembic_config,
    get_test_database_url,
    make_settings,
)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """Create a database engine for the test session with the schema in place."""
    database_url = get_test_database_url()
    if database_url.startswith("sqlite"):
        # Concurrency tests hold several connections against one file
        engine = create_engine(
            database_url, connect_args={"check_same_thread": False, "timeout": 30}
        )
        Base.metadata.create_all(engine)
    else:
        engine = create_engine(database_url)
        with engine.begin() as connection:
            command.upgrade(alembic_config(connection), "head")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> Generator[sessionmaker, None, None]:
    """Session factory bound to the test engine. Flows are deleted afterwards."""
    yield create_session_factory(engine)
    with engine.begin() as conn:
        conn.execute(delete(Flow))


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Clear settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_event_subscribers():
    clear_subscribers()
    yield
    clear_subscribers()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    yield
    set_rate_limiter(None)


@pytest.fixture
def settings() -> Settings:
    """Enabled settings with every context protected and 60 minute reverify windows."""
    return make_settings(database_url=get_test_database_url())


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def captured_events() -> list[tuple[str, dict]]:
    """Events emitted during the test as (name, payload) pairs."""
    captured: list[tuple[str, dict]] = []

    def _capture(event, payload):
        captured.append((event.value, dict(payload)))

    subscribe(_capture)
    return captured
