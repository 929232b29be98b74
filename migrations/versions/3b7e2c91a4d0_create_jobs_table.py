"""create jobs table

Revision ID: 3b7e2c91a4d0
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e2c91a4d0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Text, nullable=False, comment="Owning tenant scope"),
        sa.Column(
            "type",
            sa.Text,
            nullable=False,
            comment="Job type identifier, selects the handler",
        ),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Opaque handler parameters"
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            comment="Job status: pending|processing|completed|failed",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Claims made so far",
        ),
        sa.Column(
            "max_attempts",
            sa.Integer,
            nullable=False,
            comment="Attempts before a failure is terminal",
        ),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "error_code", sa.Text, nullable=True, comment="Structured error identifier"
        ),
        sa.Column(
            "lease_owner", sa.Text, nullable=True, comment="Worker holding the lease"
        ),
        sa.Column(
            "lease_expires_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Lease is abandoned after this time",
        ),
        sa.Column(
            "not_before_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Retry backoff: not claimable before",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
        sa.CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts", name="jobs_attempts_check"
        ),
        sa.CheckConstraint(
            "(status = 'processing' AND lease_owner IS NOT NULL"
            " AND lease_expires_at IS NOT NULL)"
            " OR (status <> 'processing' AND lease_owner IS NULL"
            " AND lease_expires_at IS NULL)",
            name="jobs_lease_check",
        ),
    )

    # Claim scans pending/expired jobs oldest first
    op.create_index("ix_jobs_status_created_at", "jobs", ["status", "created_at"])
    op.create_index("ix_jobs_tenant_id", "jobs", ["tenant_id"])
    op.create_index("ix_jobs_tenant_id_status", "jobs", ["tenant_id", "status"])
    op.create_index("ix_jobs_type_status", "jobs", ["type", "status"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_jobs_type_status", table_name="jobs")
    op.drop_index("ix_jobs_tenant_id_status", table_name="jobs")
    op.drop_index("ix_jobs_tenant_id", table_name="jobs")
    op.drop_index("ix_jobs_status_created_at", table_name="jobs")
    op.drop_table("jobs")
