"""Sessions for the flow store.

Sessions never expire loaded objects on commit: the orchestrator reads
flow fields after committing a completion, and those reads must not reload
the row.
"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from humanmark.db.engine import get_engine

_session_factory: sessionmaker[Session] | None = None


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    """Process-wide factory on the default engine, built on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory()
    return _session_factory


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, always closed."""
    with get_session_factory()() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit the block's writes together, or roll all of them back.

    Usage:
        with transaction(db):
            flows.sweep_expire(db, now=now, not_before=cutoff)
            flows.purge_older_than(db, cutoff)
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
