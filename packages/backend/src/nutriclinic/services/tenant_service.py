"""Tenant service — the tenant store plus tenant stats.

Learn: Subdomain and name are each globally unique. Like UserService,
writes only flush; the caller commits.
"""

import uuid
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic.auth.errors import NameInUse, SubdomainInUse, TenantNotFound
from nutriclinic.auth.roles import Role, is_nutritionist
from nutriclinic.db.models import Tenant, User, parse_uuid

logger = structlog.get_logger()


class TenantService:
    """Persistence and queries for tenant (clinic) records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ────────────────────────────────────────

    async def find_by_subdomain(self, subdomain: str) -> Tenant | None:
        """Tenant with this subdomain, active or not (callers check is_active)."""
        result = await self.db.execute(
            select(Tenant).where(Tenant.subdomain == subdomain)
        )
        return result.scalars().first()

    async def find_by_name(self, name: str) -> Tenant | None:
        result = await self.db.execute(select(Tenant).where(Tenant.name == name))
        return result.scalars().first()

    async def find_by_id(self, tenant_id: uuid.UUID | str) -> Tenant | None:
        tid = parse_uuid(tenant_id)
        if tid is None:
            return None
        return await self.db.get(Tenant, tid)

    async def get(self, tenant_id: uuid.UUID | str) -> Tenant:
        tenant = await self.find_by_id(tenant_id)
        if not tenant:
            raise TenantNotFound()
        return tenant

    async def find_all(self) -> list[Tenant]:
        result = await self.db.execute(
            select(Tenant).where(Tenant.is_active.is_(True)).order_by(Tenant.name)
        )
        return list(result.scalars().all())

    async def find_by_owner(self, owner_id: uuid.UUID | str) -> list[Tenant]:
        oid = parse_uuid(owner_id)
        if oid is None:
            return []
        result = await self.db.execute(
            select(Tenant).where(Tenant.owner_id == oid, Tenant.is_active.is_(True))
        )
        return list(result.scalars().all())

    # ─── Writes (flush only) ────────────────────────────

    async def create(
        self,
        name: str,
        subdomain: str,
        owner_id: uuid.UUID | None = None,
        **fields: Any,
    ) -> Tenant:
        """Insert a tenant. owner_id may be None as a placeholder."""
        if await self.find_by_subdomain(subdomain):
            raise SubdomainInUse()
        if await self.find_by_name(name):
            raise NameInUse()

        tenant = Tenant(name=name, subdomain=subdomain, owner_id=owner_id, **fields)
        self.db.add(tenant)
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent insert. Work out which key collided.
            await self.db.rollback()
            if await self.find_by_subdomain(subdomain):
                raise SubdomainInUse()
            raise NameInUse()

        logger.info("tenant.created", tenant_id=str(tenant.id), subdomain=subdomain)
        return tenant

    async def update(self, tenant_id: uuid.UUID | str, **fields: Any) -> Tenant:
        tenant = await self.get(tenant_id)

        new_subdomain = fields.get("subdomain")
        if new_subdomain and new_subdomain != tenant.subdomain:
            if await self.find_by_subdomain(new_subdomain):
                raise SubdomainInUse()
        new_name = fields.get("name")
        if new_name and new_name != tenant.name:
            if await self.find_by_name(new_name):
                raise NameInUse()

        for key, value in fields.items():
            setattr(tenant, key, value)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            if new_subdomain and await self.find_by_subdomain(new_subdomain):
                raise SubdomainInUse()
            raise NameInUse()
        return tenant

    async def update_settings(
        self, tenant_id: uuid.UUID | str, settings: dict
    ) -> Tenant:
        """Merge new keys into the settings blob."""
        tenant = await self.get(tenant_id)
        merged = {**(tenant.settings or {}), **settings}
        return await self.update(tenant.id, settings=merged)

    async def deactivate(self, tenant_id: uuid.UUID | str) -> Tenant:
        tenant = await self.update(tenant_id, is_active=False)
        logger.info("tenant.deactivated", tenant_id=str(tenant.id))
        return tenant

    async def activate(self, tenant_id: uuid.UUID | str) -> Tenant:
        tenant = await self.update(tenant_id, is_active=True)
        logger.info("tenant.activated", tenant_id=str(tenant.id))
        return tenant

    # ─── Stats ──────────────────────────────────────────

    async def get_stats(self, tenant_id: uuid.UUID | str) -> dict:
        """User counts for one tenant, by activity and role."""
        tenant = await self.get(tenant_id)

        result = await self.db.execute(
            select(User.role, User.is_active, func.count(User.id))
            .where(User.tenant_id == tenant.id)
            .group_by(User.role, User.is_active)
        )
        total = active = nutricionistas = pacientes = 0
        for role, is_active, count in result.all():
            total += count
            if is_active:
                active += count
            if is_nutritionist(role):
                nutricionistas += count
            elif role == Role.PACIENTE:
                pacientes += count

        return {
            "id": tenant.id,
            "name": tenant.name,
            "subdomain": tenant.subdomain,
            "total_users": total,
            "active_users": active,
            "nutricionistas": nutricionistas,
            "pacientes": pacientes,
            "is_active": tenant.is_active,
            "created_at": tenant.created_at,
        }
