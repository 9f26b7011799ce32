"""Tenant admin API routes — a clinic managing itself.

Learn: Everything is scoped to the caller's own tenant (taken from the
token, never from the request). A super admin has no tenant and gets a
TenantRequired 400 here; the /admin routes are theirs.
"""

from fastapi import APIRouter, Depends

from nutriclinic.auth.dependencies import CurrentUser, get_auth_service
from nutriclinic.auth.guard import authorize
from nutriclinic.auth.roles import Role
from nutriclinic.auth.service import AuthService
from nutriclinic.schemas.tenant import (
    PatientsDistribution,
    TenantOverview,
    TenantRead,
    TenantSettingsUpdate,
    TenantStats,
)
from nutriclinic.schemas.user import (
    InviteNutricionista,
    InviteResponse,
    RoleUpdate,
    UserRead,
    UserUpdate,
)
from nutriclinic.services.management import ManagementService

router = APIRouter(prefix="/tenant-admin")


def _svc(auth: AuthService = Depends(get_auth_service)) -> ManagementService:
    return ManagementService(auth)


# ─── Users in the tenant ────────────────────────────────

@router.get("/users", response_model=list[UserRead])
async def tenant_users(
    identity: CurrentUser = Depends(authorize("tenant_admin.users")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.find_by_tenant(svc.require_tenant(identity))


@router.get("/nutricionistas", response_model=list[UserRead])
async def tenant_nutricionistas(
    identity: CurrentUser = Depends(authorize("tenant_admin.nutricionistas")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.find_nutricionistas_in_tenant(svc.require_tenant(identity))


@router.get("/patients", response_model=list[UserRead])
async def tenant_patients(
    identity: CurrentUser = Depends(authorize("tenant_admin.patients")),
    svc: ManagementService = Depends(_svc),
):
    users = await svc.users.find_by_tenant(svc.require_tenant(identity))
    return [u for u in users if u.role == Role.PACIENTE]


@router.post("/invite-nutricionista", response_model=InviteResponse, status_code=201)
async def invite_nutricionista(
    body: InviteNutricionista,
    identity: CurrentUser = Depends(authorize("tenant_admin.invite_nutricionista")),
    svc: ManagementService = Depends(_svc),
):
    user, password = await svc.invite_nutricionista(identity, **body.model_dump())
    await svc.db.commit()
    return InviteResponse(user=UserRead.model_validate(user), temp_password=password)


@router.patch("/users/{user_id}/role", response_model=UserRead)
async def update_user_role(
    user_id: str,
    body: RoleUpdate,
    identity: CurrentUser = Depends(authorize("tenant_admin.update_role")),
    svc: ManagementService = Depends(_svc),
):
    """Switch a user between staff nutritionist and patient."""
    user = await svc.change_role(identity, user_id, body.role, body.nutricionista_id)
    await svc.db.commit()
    return user


@router.patch("/users/{user_id}", response_model=UserRead)
async def update_user(
    user_id: str,
    body: UserUpdate,
    identity: CurrentUser = Depends(authorize("tenant_admin.update_user")),
    svc: ManagementService = Depends(_svc),
):
    user = await svc.update_user(identity, user_id, body.model_dump(exclude_unset=True))
    await svc.db.commit()
    return user


@router.delete("/users/{user_id}", response_model=UserRead)
async def remove_user(
    user_id: str,
    identity: CurrentUser = Depends(authorize("tenant_admin.remove_user")),
    svc: ManagementService = Depends(_svc),
):
    """Deactivate a user of the tenant. Admins can't remove other admins."""
    await svc.user_in_own_tenant(identity, user_id)
    user = await svc.deactivate(identity, user_id)
    await svc.db.commit()
    return user


# ─── The tenant itself ──────────────────────────────────

@router.get("/tenant/info", response_model=TenantRead)
async def tenant_info(
    identity: CurrentUser = Depends(authorize("tenant_admin.tenant_info")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.tenants.get(svc.require_tenant(identity))


@router.get("/tenant/stats", response_model=TenantStats)
async def tenant_stats(
    identity: CurrentUser = Depends(authorize("tenant_admin.tenant_stats")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.tenants.get_stats(svc.require_tenant(identity))


@router.patch("/tenant/settings", response_model=TenantRead)
async def update_tenant_settings(
    body: TenantSettingsUpdate,
    identity: CurrentUser = Depends(authorize("tenant_admin.tenant_settings")),
    svc: ManagementService = Depends(_svc),
):
    """Merge new settings into the tenant's existing ones."""
    tenant = await svc.tenants.update_settings(
        svc.require_tenant(identity), body.model_dump(exclude_unset=True)
    )
    await svc.db.commit()
    return tenant


# ─── Reports ────────────────────────────────────────────

@router.get("/reports/overview", response_model=TenantOverview)
async def overview(
    identity: CurrentUser = Depends(authorize("tenant_admin.reports")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.tenant_overview(svc.require_tenant(identity))


@router.get("/reports/patients-distribution", response_model=list[PatientsDistribution])
async def patients_distribution(
    identity: CurrentUser = Depends(authorize("tenant_admin.reports")),
    svc: ManagementService = Depends(_svc),
):
    breakdown = await svc.tenant_breakdown(svc.require_tenant(identity))
    return breakdown["loads"]
