"""Create humanmark_flows

Revision ID: 0001
Revises:
Create Date: 2026-10-17

One row per verification attempt. Beyond the column constraints:
- challenge is unique across all statuses
- a partial unique index on challenge WHERE status = 'completed' makes
  "at most one completion per challenge" a physical invariant
- completed_at is set if and only if status = 'completed'
- (user_id, context, status, completed_at) WHERE completed serves reverify lookups
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "humanmark_flows",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("challenge", sa.String(255), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("context", sa.String(50), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("lock_version", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("challenge", name="uq_humanmark_flows_challenge"),
        sa.CheckConstraint(
            "context IN ('post', 'topic', 'message')",
            name="ck_humanmark_flows_context",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'expired', 'failed')",
            name="ck_humanmark_flows_status",
        ),
        sa.CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="ck_humanmark_flows_completed_at",
        ),
    )

    op.execute(
        """
        CREATE UNIQUE INDEX uix_humanmark_flows_completed_challenge
        ON humanmark_flows (challenge)
        WHERE status = 'completed'
        """
    )
    op.create_index(
        "idx_humanmark_flows_status_created_at",
        "humanmark_flows",
        ["status", "created_at"],
    )
    op.create_index("idx_humanmark_flows_created_at", "humanmark_flows", ["created_at"])
    op.execute(
        """
        CREATE INDEX idx_humanmark_flows_reverify
        ON humanmark_flows (user_id, context, status, completed_at)
        WHERE status = 'completed'
        """
    )


def downgrade() -> None:
    op.drop_index("idx_humanmark_flows_reverify", table_name="humanmark_flows")
    op.drop_index("idx_humanmark_flows_created_at", table_name="humanmark_flows")
    op.drop_index("idx_humanmark_flows_status_created_at", table_name="humanmark_flows")
    op.drop_index("uix_humanmark_flows_completed_challenge", table_name="humanmark_flows")
    op.drop_table("humanmark_flows")
