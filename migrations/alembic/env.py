"""Alembic environment.

The database URL comes from DATABASE_URL via humanmark settings.
Run with: alembic -c migrations/alembic.ini upgrade head

Callers that already hold a connection (the test suite) pass it as
config.attributes["connection"]; migrations then run inside that
connection's transaction.
"""

from alembic import context

from humanmark.db.engine import create_db_engine
from humanmark.db.models import Base

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    from humanmark.config import get_settings

    context.configure(
        url=get_settings().database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_on(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = context.config.attributes.get("connection")
    if connection is not None:
        _run_on(connection)
        return

    engine = create_db_engine()
    try:
        with engine.connect() as connection:
            _run_on(connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
