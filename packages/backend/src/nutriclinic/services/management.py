"""Management service — who may create, change and remove whom.

Learn: The guard only knows roles, permissions and tenant ids. The rules
that depend on the TARGET user live here, shared by /users,
/tenant-admin and /admin:
- staff nutritionists create and deactivate patients only
- nutritionist admins manage staff and patients, never another admin
- everyone but super admins stays inside their own tenant

Methods flush only; routes commit.
"""

import secrets
import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import func, select

from nutriclinic.auth.dependencies import CurrentUser
from nutriclinic.auth.errors import Forbidden, TenantRequired, UserNotFound
from nutriclinic.auth.roles import Role, is_nutritionist
from nutriclinic.auth.service import AuthService
from nutriclinic.db.models import Tenant, User
from nutriclinic.schemas.auth import RegisterRequest

logger = structlog.get_logger()

ADMIN_ASSIGNABLE = (Role.NUTRICIONISTA_FUNCIONARIO, Role.PACIENTE)


class ManagementService:
    """Target-aware user management on top of AuthService."""

    def __init__(self, auth: AuthService):
        self.auth = auth
        self.db = auth.db
        self.users = auth.users
        self.tenants = auth.tenants

    # ─── Scoping ────────────────────────────────────────

    @staticmethod
    def require_tenant(identity: CurrentUser) -> uuid.UUID:
        """The caller's tenant, or TenantRequired (e.g. a super admin)."""
        tenant_id = identity.tenant_uuid
        if tenant_id is None:
            raise TenantRequired("User has no tenant")
        return tenant_id

    async def visible_user(self, identity: CurrentUser, user_id: str) -> User:
        """Target user, 404 when missing, 403 when in another tenant."""
        user = await self.users.get(user_id)
        if not identity.is_super_admin and user.tenant_id != identity.tenant_uuid:
            raise Forbidden("Access denied to a user of another tenant")
        return user

    async def user_in_own_tenant(self, identity: CurrentUser, user_id: str) -> User:
        """Like visible_user, but a foreign user is reported as not found."""
        tenant_id = self.require_tenant(identity)
        user = await self.users.find_by_id(user_id)
        if not user or user.tenant_id != tenant_id:
            raise UserNotFound("User not found in tenant")
        return user

    # ─── Creation ───────────────────────────────────────

    async def create_user(
        self, identity: CurrentUser, body: RegisterRequest
    ) -> User:
        """Create an account on behalf of the caller."""
        if not identity.is_super_admin:
            tenant_id = self.require_tenant(identity)
            if identity.role == Role.NUTRICIONISTA_FUNCIONARIO and (
                body.role != Role.PACIENTE
            ):
                raise Forbidden("Staff nutritionists can only create patients")
            if body.role not in ADMIN_ASSIGNABLE:
                raise Forbidden("Only staff nutritionists and patients can be created")

            update: dict[str, Any] = {"tenant_id": tenant_id}
            if body.role == Role.PACIENTE and not body.nutricionista_id:
                update["nutricionista_id"] = identity.user_uuid
            body = body.model_copy(update=update)

        user = await self.auth.create_account(body)
        logger.info(
            "user.created",
            user_id=str(user.id),
            role=user.role,
            created_by=identity.id,
        )
        return user

    async def create_nutricionista(
        self, fields: dict, tenant_id: Optional[uuid.UUID] = None
    ) -> User:
        """Super admin path: staff in an existing tenant, or admin of a new one."""
        role = Role.NUTRICIONISTA_FUNCIONARIO if tenant_id else Role.NUTRICIONISTA_ADMIN
        body = RegisterRequest(**fields, role=role, tenant_id=tenant_id)
        return await self.auth.create_account(body)

    async def invite_nutricionista(
        self,
        identity: CurrentUser,
        email: str,
        name: str,
        crn: Optional[str] = None,
        especialidade: Optional[str] = None,
        temp_password: Optional[str] = None,
    ) -> tuple[User, str]:
        """Staff nutritionist in the caller's tenant. Returns (user, password)."""
        tenant_id = self.require_tenant(identity)
        password = temp_password or secrets.token_urlsafe(12)
        body = RegisterRequest(
            email=email,
            name=name,
            password=password,
            role=Role.NUTRICIONISTA_FUNCIONARIO,
            tenant_id=tenant_id,
            crn=crn,
            especialidade=especialidade,
        )
        user = await self.auth.create_account(body)
        logger.info("user.invited", user_id=str(user.id), invited_by=identity.id)
        return user, password

    # ─── Changes ────────────────────────────────────────

    async def change_role(
        self,
        identity: CurrentUser,
        user_id: str,
        role: Role,
        nutricionista_id: Optional[uuid.UUID] = None,
    ) -> User:
        """Tenant-scoped role change. Super admins use AuthService.assign_role."""
        if identity.is_super_admin:
            return await self.auth.assign_role(
                user_id, role, nutricionista_id=nutricionista_id
            )

        target = await self.user_in_own_tenant(identity, user_id)
        if target.role == Role.NUTRICIONISTA_ADMIN:
            raise Forbidden("Cannot change the role of another admin")
        if role not in ADMIN_ASSIGNABLE:
            raise Forbidden("Role not allowed")
        return await self.auth.assign_role(
            target.id, role, nutricionista_id=nutricionista_id
        )

    async def update_user(
        self, identity: CurrentUser, user_id: str, fields: dict
    ) -> User:
        target = await self.user_in_own_tenant(identity, user_id)
        if (
            target.role == Role.NUTRICIONISTA_ADMIN
            and str(target.id) != identity.id
        ):
            raise Forbidden("Cannot modify another admin")
        if fields.get("is_active") is False:
            fields = {**fields, "refresh_token_hash": None}
        return await self.users.update(target.id, **fields)

    async def deactivate(self, identity: CurrentUser, user_id: str) -> User:
        if identity.is_super_admin:
            return await self.users.deactivate(user_id)

        target = await self.visible_user(identity, user_id)
        if identity.role == Role.NUTRICIONISTA_FUNCIONARIO and (
            target.role != Role.PACIENTE
        ):
            raise Forbidden("Staff nutritionists can only deactivate patients")
        if identity.role == Role.NUTRICIONISTA_ADMIN and (
            target.role == Role.NUTRICIONISTA_ADMIN
        ):
            raise Forbidden("Cannot deactivate another admin")
        return await self.users.deactivate(target.id)

    # ─── Reports ────────────────────────────────────────

    async def tenant_breakdown(self, tenant_id: uuid.UUID | str) -> dict:
        """Active users of a tenant split into nutritionists and patients."""
        users = await self.users.find_by_tenant(tenant_id)
        nutricionistas = [u for u in users if is_nutritionist(u.role)]
        pacientes = [u for u in users if u.role == Role.PACIENTE]

        loads = []
        for nut in nutricionistas:
            mine = [p for p in pacientes if p.nutricionista_id == nut.id]
            loads.append({
                "nutricionista_id": nut.id,
                "nutricionista_name": nut.name,
                "role": nut.role,
                "crn": nut.crn,
                "especialidade": nut.especialidade,
                "patients_count": len(mine),
                "patients": mine,
            })

        return {
            "users": users,
            "nutricionistas": nutricionistas,
            "pacientes": pacientes,
            "loads": loads,
        }

    async def tenant_overview(self, tenant_id: uuid.UUID | str) -> dict:
        # The breakdown only sees active users; headcounts come from get_stats
        stats = await self.tenants.get_stats(tenant_id)
        breakdown = await self.tenant_breakdown(tenant_id)
        return {
            "total_users": stats["total_users"],
            "total_nutricionistas": len(breakdown["nutricionistas"]),
            "total_pacientes": len(breakdown["pacientes"]),
            "active_users": stats["active_users"],
            "nutricionistas": breakdown["loads"],
        }

    async def system_overview(self) -> dict:
        by_role: dict[str, int] = {}
        active = inactive = 0
        rows = await self.db.execute(
            select(User.role, User.is_active, func.count(User.id)).group_by(
                User.role, User.is_active
            )
        )
        for role, is_active, count in rows.all():
            by_role[role] = by_role.get(role, 0) + count
            if is_active:
                active += count
            else:
                inactive += count

        tenants = (await self.db.execute(select(Tenant))).scalars().all()
        populated = await self.db.execute(
            select(func.count(func.distinct(User.tenant_id))).where(
                User.tenant_id.is_not(None)
            )
        )

        return {
            "total_users": active + inactive,
            "total_tenants": len(tenants),
            "active_tenants": len([t for t in tenants if t.is_active]),
            "users_by_role": by_role,
            "active_users": active,
            "inactive_users": inactive,
            "tenants_with_users": populated.scalar_one(),
        }
