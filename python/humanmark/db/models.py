"""SQLAlchemy ORM models for humanmark.

One table: humanmark_flows, the lifecycle record of a verification attempt.
Status and context are stored as plain strings guarded by check constraints
so the schema runs unchanged on PostgreSQL and SQLite.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class FlowStatus(str, PyEnum):
    """Flow lifecycle states.

    States:
        pending: Challenge issued, waiting for a receipt (only initial state)
        completed: Receipt accepted; terminal
        expired: Pending for longer than the expiry duration; terminal
        failed: Terminal failure recorded
    """

    pending = "pending"
    completed = "completed"
    expired = "expired"
    failed = "failed"


class FlowContext(str, PyEnum):
    """Content actions that can be protected."""

    post = "post"
    topic = "topic"
    message = "message"


TERMINAL_STATUSES = frozenset({FlowStatus.completed, FlowStatus.expired, FlowStatus.failed})


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# =============================================================================
# Models
# =============================================================================


class Flow(Base):
    """Verification flow - one challenge issued by the provider.

    Only status, completed_at and lock_version ever change after insert, and
    only through the conditional updates in humanmark.services.flows.
    """

    __tablename__ = "humanmark_flows"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    challenge: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FlowStatus.pending.value,
        server_default=FlowStatus.pending.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lock_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    __table_args__ = (
        UniqueConstraint("challenge", name="uq_humanmark_flows_challenge"),
        CheckConstraint(
            "context IN ('post', 'topic', 'message')",
            name="ck_humanmark_flows_context",
        ),
        CheckConstraint(
            "status IN ('pending', 'completed', 'expired', 'failed')",
            name="ck_humanmark_flows_status",
        ),
        CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="ck_humanmark_flows_completed_at",
        ),
        Index(
            "uix_humanmark_flows_completed_challenge",
            "challenge",
            unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
        Index("idx_humanmark_flows_status_created_at", "status", "created_at"),
        Index("idx_humanmark_flows_created_at", "created_at"),
        Index(
            "idx_humanmark_flows_reverify",
            "user_id",
            "context",
            "status",
            "completed_at",
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
    )

    @property
    def anonymous(self) -> bool:
        return self.user_id is None

    def __repr__(self) -> str:
        return f"<Flow id={self.id} context={self.context} status={self.status}>"
