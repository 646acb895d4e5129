"""SQLAlchemy 2.0 mapped classes for the canonical Lab Portal schema.

Tables:
- users: minimal mirror of the portal's user table (owned by the CRUD layer).
- container_statuses: lookup table for lifecycle status names.
- containers: one lifecycle record per provisioned lab.
- audit_logs: append-only action log.

These classes drive migrations and the audit sink. Container rows are written
through lab_api.services.record_writer, which reflects the live columns
instead of trusting this model, because deployed schemas drift.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import INET, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import DateTime, String

# JSONB and INET on PostgreSQL; plain JSON/text elsewhere (SQLite in tests).
_JsonType = JSON().with_variant(JSONB, "postgresql")
_InetType = String(45).with_variant(INET, "postgresql")
_BigIdType = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="user")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )


class ContainerStatusRow(Base):
    __tablename__ = "container_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class Container(Base):
    __tablename__ = "containers"
    __table_args__ = (
        Index("ix_containers_owner_user_id", "owner_user_id"),
        Index("ix_containers_status_id", "status_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lxc_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    owner_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    template_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image: Mapped[str] = mapped_column(Text, nullable=False)
    cpu: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    memory_mb: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1024")
    disk_mb: Mapped[int] = mapped_column(Integer, nullable=False, server_default="10240")
    ip_address: Mapped[str | None] = mapped_column(_InetType, nullable=True)
    status_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("container_statuses.id", ondelete="SET NULL"), nullable=True
    )
    metadata_: Mapped[dict | None] = mapped_column("metadata", _JsonType, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stopped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_actor_user_id", "actor_user_id"),
        Index("ix_audit_logs_target", "target_type", "target_id"),
    )

    id: Mapped[int] = mapped_column(_BigIdType, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(Text, nullable=False)
    target_type: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
