"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic auto-generates migrations by comparing these
models to the actual DB.

Key concepts:
- UUID primary keys via the portable Uuid type (native UUID on PostgreSQL)
- JSON columns that become JSONB on PostgreSQL
- Unique indexes on users.email, tenants.name and tenants.subdomain are the
  authoritative uniqueness check; services pre-check only for nicer errors
- Soft deletes: is_active flags, never DELETE
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class Tenant(Base):
    """A clinic. Multi-tenant root: every non-super-admin user belongs to one.

    Learn: owner_id carries no foreign key. A nutritionist admin's tenant
    is inserted before the admin exists, with owner_id NULL as placeholder,
    and back-filled in the same transaction.
    """

    __tablename__ = "tenants"
    __table_args__ = (
        Index("idx_tenants_owner", "owner_id"),
        Index("idx_tenants_active", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    subdomain: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # maxPatients, allowedFeatures, customBranding
    settings: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)

    # Contact
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)

    tenant_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JsonType, nullable=True
    )  # Python attr is tenant_metadata; DB column is "metadata"

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class User(Base):
    """A person using the platform: admin, nutritionist or patient.

    Learn: role decides which optional columns matter:
    - super_admin: tenant_id is NULL
    - nutricionista_admin / nutricionista_funcionario: tenant_id set,
      crn + especialidade optional
    - paciente: tenant_id and nutricionista_id set
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_tenant_role", "tenant_id", "role"),
        Index("idx_users_nutricionista", "nutricionista_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refresh_token_hash: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True
    )  # sha256 of the single active refresh token

    # Patients
    nutricionista_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    # Nutritionists
    crn: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    especialidade: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    user_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JsonType, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class AccessLog(Base):
    """One row per API request — append-only audit trail.

    Learn: user_* columns hold "anonymous" for unauthenticated requests.
    Never updated or deleted.
    """

    __tablename__ = "access_logs"
    __table_args__ = (
        Index("idx_access_logs_user", "user_id", "timestamp"),
        Index("idx_access_logs_tenant", "tenant_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_role: Mapped[str] = mapped_column(String(50), nullable=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # read, create, update, delete
    resource: Mapped[str] = mapped_column(String(500), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(100), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(500), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(
        "metadata", JsonType, nullable=False, default=dict
    )  # responseTime, queryParams
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


def parse_uuid(value) -> Optional[uuid.UUID]:
    """Coerce a str/UUID to UUID. Malformed input yields None (no row can match)."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
