"""User API routes.

Learn: Each route names its operation in authorize(); the guard looks up
the required roles/permissions in ROUTE_REQUIREMENTS and enforces tenant
isolation for any tenant_id in the path, body or query. Rules about the
TARGET user (staff can only touch patients, admins never touch admins)
live in ManagementService.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from nutriclinic.auth.dependencies import CurrentUser, get_auth_service
from nutriclinic.auth.guard import authorize
from nutriclinic.auth.roles import Role, is_nutritionist
from nutriclinic.auth.service import AuthService
from nutriclinic.schemas.auth import RegisterRequest
from nutriclinic.schemas.user import (
    InviteNutricionista,
    InviteResponse,
    NutricionistaCreate,
    RoleUpdate,
    UserRead,
)
from nutriclinic.services.management import ManagementService

router = APIRouter(prefix="/users")


def _svc(auth: AuthService = Depends(get_auth_service)) -> ManagementService:
    return ManagementService(auth)


# ─── Reads ──────────────────────────────────────────────

@router.get("", response_model=list[UserRead])
async def list_users(
    _: CurrentUser = Depends(authorize("users.list")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.find_all()


@router.get("/profile", response_model=UserRead)
async def my_profile(
    identity: CurrentUser = Depends(authorize("users.profile")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.get(identity.id)


@router.get("/by-tenant/{tenant_id}", response_model=list[UserRead])
async def users_by_tenant(
    tenant_id: str,
    _: CurrentUser = Depends(authorize("users.by_tenant")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.find_by_tenant(tenant_id)


@router.get("/patients/my", response_model=list[UserRead])
async def my_patients(
    identity: CurrentUser = Depends(authorize("users.my_patients")),
    svc: ManagementService = Depends(_svc),
):
    """Nutritionists get their own patients; super admins get every patient."""
    if is_nutritionist(identity.role):
        return await svc.users.find_patients_by_nutricionista(identity.id)
    return [u for u in await svc.users.find_all() if u.role == Role.PACIENTE]


@router.get("/tenant/{tenant_id}/nutricionistas", response_model=list[UserRead])
async def tenant_nutricionistas(
    tenant_id: str,
    _: CurrentUser = Depends(authorize("users.tenant_nutricionistas")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.users.find_nutricionistas_in_tenant(tenant_id)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(
    user_id: str,
    identity: CurrentUser = Depends(authorize("users.get")),
    svc: ManagementService = Depends(_svc),
):
    return await svc.visible_user(identity, user_id)


# ─── Writes ─────────────────────────────────────────────

@router.post("", response_model=UserRead, status_code=201)
async def create_user(
    body: RegisterRequest,
    identity: CurrentUser = Depends(authorize("users.create")),
    svc: ManagementService = Depends(_svc),
):
    """Create a user in the caller's tenant (any tenant for super admins)."""
    user = await svc.create_user(identity, body)
    await svc.db.commit()
    return user


@router.post("/nutricionista", response_model=UserRead, status_code=201)
async def create_nutricionista(
    body: NutricionistaCreate,
    tenant_id: Optional[uuid.UUID] = None,
    _: CurrentUser = Depends(authorize("users.create_nutricionista")),
    svc: ManagementService = Depends(_svc),
):
    """Staff nutritionist when ?tenant_id= is given, else admin of a new clinic."""
    user = await svc.create_nutricionista(body.model_dump(), tenant_id)
    await svc.db.commit()
    return user


@router.post("/invite-nutricionista", response_model=InviteResponse, status_code=201)
async def invite_nutricionista(
    body: InviteNutricionista,
    identity: CurrentUser = Depends(authorize("users.invite_nutricionista")),
    svc: ManagementService = Depends(_svc),
):
    user, password = await svc.invite_nutricionista(identity, **body.model_dump())
    await svc.db.commit()
    return InviteResponse(user=UserRead.model_validate(user), temp_password=password)


@router.patch("/{user_id}/role", response_model=UserRead)
async def update_role(
    user_id: str,
    body: RoleUpdate,
    identity: CurrentUser = Depends(authorize("users.update_role")),
    svc: ManagementService = Depends(_svc),
):
    user = await svc.change_role(identity, user_id, body.role, body.nutricionista_id)
    await svc.db.commit()
    return user


@router.patch("/{user_id}/deactivate", response_model=UserRead)
async def deactivate_user(
    user_id: str,
    identity: CurrentUser = Depends(authorize("users.deactivate")),
    svc: ManagementService = Depends(_svc),
):
    user = await svc.deactivate(identity, user_id)
    await svc.db.commit()
    return user
