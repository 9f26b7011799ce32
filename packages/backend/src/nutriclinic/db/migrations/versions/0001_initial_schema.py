"""Initial schema: tenants, users, access_logs

Learn: tenants.owner_id carries no foreign key. A nutritionist admin's
tenant is inserted first with owner_id NULL, then the user, then the
owner is back-filled in the same transaction. users.nutricionista_id
points back at users.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ─── Tenants ─────────────────────────────────────────
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("subdomain", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("settings", JsonType, nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("address", JsonType, nullable=True),
        sa.Column("metadata", JsonType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("name", name="uq_tenants_name"),
        sa.UniqueConstraint("subdomain", name="uq_tenants_subdomain"),
    )
    op.create_index("idx_tenants_owner", "tenants", ["owner_id"])
    op.create_index("idx_tenants_active", "tenants", ["is_active"])

    # ─── Users ───────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_token_hash", sa.String(128), nullable=True),
        sa.Column("nutricionista_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("crn", sa.String(50), nullable=True),
        sa.Column("especialidade", sa.String(200), nullable=True),
        sa.Column("metadata", JsonType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("idx_users_tenant_role", "users", ["tenant_id", "role"])
    op.create_index("idx_users_nutricionista", "users", ["nutricionista_id"])

    # ─── Access logs ─────────────────────────────────────
    op.create_table(
        "access_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("user_role", sa.String(50), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("resource", sa.String(500), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("ip_address", sa.String(100), nullable=False),
        sa.Column("user_agent", sa.String(500), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", JsonType, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_access_logs_user", "access_logs", ["user_id", "timestamp"])
    op.create_index("idx_access_logs_tenant", "access_logs", ["tenant_id", "timestamp"])


def downgrade() -> None:
    op.drop_index("idx_access_logs_tenant", table_name="access_logs")
    op.drop_index("idx_access_logs_user", table_name="access_logs")
    op.drop_table("access_logs")
    op.drop_index("idx_users_nutricionista", table_name="users")
    op.drop_index("idx_users_tenant_role", table_name="users")
    op.drop_table("users")
    op.drop_index("idx_tenants_active", table_name="tenants")
    op.drop_index("idx_tenants_owner", table_name="tenants")
    op.drop_table("tenants")
