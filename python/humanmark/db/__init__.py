"""Database module for humanmark.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from humanmark.db.engine import create_db_engine, get_engine
from humanmark.db.models import (
    TERMINAL_STATUSES,
    Base,
    Flow,
    FlowContext,
    FlowStatus,
    as_utc,
)
from humanmark.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "FlowStatus",
    "FlowContext",
    "TERMINAL_STATUSES",
    # Models
    "Flow",
    "as_utc",
]
