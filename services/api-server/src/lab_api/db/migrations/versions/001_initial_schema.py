"""001_initial_schema

Create users, container_statuses, containers and audit_logs, and seed the
lifecycle status names.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# JSONB, INET and BIGSERIAL on PostgreSQL; JSON, text and INTEGER keys on SQLite.
_JSON = sa.JSON().with_variant(postgresql.JSONB, "postgresql")
_INET = sa.String(45).with_variant(postgresql.INET, "postgresql")
_BIG_ID = sa.BigInteger().with_variant(sa.Integer, "sqlite")

_STATUSES = ("creating", "running", "stopped", "failed", "deleting")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="user"),
        sa.Column("status", sa.String(50), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    statuses = op.create_table(
        "container_statuses",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.Text, nullable=False, unique=True),
    )
    op.bulk_insert(statuses, [{"name": name} for name in _STATUSES])

    op.create_table(
        "containers",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("lxc_name", sa.Text, nullable=False, unique=True),
        sa.Column(
            "owner_user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("template_id", sa.Integer, nullable=True),
        sa.Column("image", sa.Text, nullable=False),
        sa.Column("cpu", sa.Integer, nullable=False, server_default="1"),
        sa.Column("memory_mb", sa.Integer, nullable=False, server_default="1024"),
        sa.Column("disk_mb", sa.Integer, nullable=False, server_default="10240"),
        sa.Column("ip_address", _INET, nullable=True),
        sa.Column(
            "status_id",
            sa.Integer,
            sa.ForeignKey("container_statuses.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("metadata", _JSON, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("stopped_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_containers_owner_user_id", "containers", ["owner_user_id"])
    op.create_index("ix_containers_status_id", "containers", ["status_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", _BIG_ID, primary_key=True),
        sa.Column(
            "actor_user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("target_type", sa.Text, nullable=False),
        sa.Column("target_id", sa.Text, nullable=True),
        sa.Column("meta", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    op.create_index("ix_audit_logs_target", "audit_logs", ["target_type", "target_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("containers")
    op.drop_table("container_statuses")
    op.drop_table("users")
