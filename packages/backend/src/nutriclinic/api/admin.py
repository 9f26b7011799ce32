"""Admin API routes — global user and tenant management (super admin).

Learn: Every route here requires the super_admin role; the declarative
requirement lives in ROUTE_REQUIREMENTS under "admin.*". Super admins are
exempt from tenant isolation, so tenant ids in paths are unrestricted.
"""

from fastapi import APIRouter, Depends

from nutriclinic.auth.dependencies import CurrentUser, get_auth_service
from nutriclinic.auth.guard import authorize
from nutriclinic.auth.roles import Role
from nutriclinic.auth.service import AuthService
from nutriclinic.schemas.auth import RegisterRequest
from nutriclinic.schemas.tenant import (
    NutricionistaLoad,
    SystemOverview,
    TenantRead,
    TenantSettingsUpdate,
    TenantStats,
)
from nutriclinic.schemas.user import AdminRoleUpdate, SuperAdminCreate, UserRead
from nutriclinic.services.management import ManagementService

router = APIRouter(prefix="/admin")


def _svc(auth: AuthService = Depends(get_auth_service)) -> ManagementService:
    return ManagementService(auth)


# ─── Users ──────────────────────────────────────────────

@router.get("/users", response_model=list[UserRead])
async def all_users(
    _: CurrentUser = Depends(authorize("admin.users")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.find_all()


@router.get("/users/super-admins", response_model=list[UserRead])
async def super_admins(
    _: CurrentUser = Depends(authorize("admin.super_admins")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.find_super_admins()


@router.post("/users/create-super-admin", response_model=UserRead, status_code=201)
async def create_super_admin(
    body: SuperAdminCreate,
    _: CurrentUser = Depends(authorize("admin.create_super_admin")),
    svc: ManagementService = Depends(_svc),
):
    user = await svc.auth.create_account(
        RegisterRequest(**body.model_dump(), role=Role.SUPER_ADMIN)
    )
    await svc.db.commit()
    return user


@router.patch("/users/{user_id}/role", response_model=UserRead)
async def change_any_role(
    user_id: str,
    body: AdminRoleUpdate,
    _: CurrentUser = Depends(authorize("admin.update_role")),
    svc: ManagementService = Depends(_svc),
):
    """Change any user's role, optionally moving them to another tenant."""
    user = await svc.auth.assign_role(
        user_id, body.role, body.tenant_id, body.nutricionista_id
    )
    await svc.db.commit()
    return user


@router.delete("/users/{user_id}", response_model=UserRead)
async def deactivate_user(
    user_id: str,
    _: CurrentUser = Depends(authorize("admin.deactivate_user")),
    svc: ManagementService = Depends(_svc),
):
    """Soft delete: the user is deactivated, never removed."""
    user = await svc.users.deactivate(user_id)
    await svc.db.commit()
    return user


# ─── Tenants ────────────────────────────────────────────

@router.get("/tenants", response_model=list[TenantRead])
async def all_tenants(
    _: CurrentUser = Depends(authorize("admin.tenants")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.tenants.find_all()


@router.get("/tenants/{tenant_id}/stats", response_model=TenantStats)
async def tenant_stats(
    tenant_id: str,
    _: CurrentUser = Depends(authorize("admin.tenant_stats")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.tenants.get_stats(tenant_id)


@router.patch("/tenants/{tenant_id}/settings", response_model=TenantRead)
async def update_tenant_settings(
    tenant_id: str,
    body: TenantSettingsUpdate,
    _: CurrentUser = Depends(authorize("admin.tenant_settings")),
    svc: ManagementService = Depends(_svc),
):
    tenant = await svc.tenants.update_settings(
        tenant_id, body.model_dump(exclude_unset=True)
    )
    await svc.db.commit()
    return tenant


@router.delete("/tenants/{tenant_id}", response_model=TenantRead)
async def deactivate_tenant(
    tenant_id: str,
    _: CurrentUser = Depends(authorize("admin.deactivate_tenant")),
    svc: ManagementService = Depends(_svc),
):
    tenant = await svc.tenants.deactivate(tenant_id)
    await svc.db.commit()
    return tenant


@router.patch("/tenants/{tenant_id}/activate", response_model=TenantRead)
async def activate_tenant(
    tenant_id: str,
    _: CurrentUser = Depends(authorize("admin.activate_tenant")),
    svc: ManagementService = Depends(_svc),
):
    tenant = await svc.tenants.activate(tenant_id)
    await svc.db.commit()
    return tenant


# ─── Reports ────────────────────────────────────────────

@router.get("/reports/system-overview", response_model=SystemOverview)
async def system_overview(
    _: CurrentUser = Depends(authorize("admin.system_overview")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.system_overview()


@router.get("/reports/tenant/{tenant_id}/details")
async def tenant_report(
    tenant_id: str,
    _: CurrentUser = Depends(authorize("admin.tenant_report")),
    svc: ManagementService = Depends(_svc),
):
    """Tenant stats plus its users and the patient load per nutritionist."""
    stats = TenantStats(**await svc.tenants.get_stats(tenant_id))
    breakdown = await svc.tenant_breakdown(tenant_id)
    return {
        **stats.model_dump(mode="json"),
        "users": [
            UserRead.model_validate(u).model_dump(mode="json")
            for u in breakdown["users"]
        ],
        "patients_per_nutricionista": [
            NutricionistaLoad(**load).model_dump(mode="json")
            for load in breakdown["loads"]
        ],
    }
