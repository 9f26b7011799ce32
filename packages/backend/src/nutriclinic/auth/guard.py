"""Authorization guard — role, permission and tenant checks per request.

Learn: Route requirements are an explicit table, not decorators scanned
at runtime. Each route declares `Depends(authorize("users.list"))`; the
guard looks the operation up in ROUTE_REQUIREMENTS and checks the decoded
claims against it:

1. No roles and no permissions declared → allow
2. No claims → NotAuthenticated
3. Role not in the required roles → Forbidden
4. Any required permission missing for the role → Forbidden
5. Non-super-admin touching another tenant's id (path, body or query)
   → Forbidden

check_access() is pure; authorize() is the FastAPI adapter around it.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from nutriclinic.auth.dependencies import CurrentUser, get_current_user_optional
from nutriclinic.auth.errors import Forbidden, NotAuthenticated
from nutriclinic.auth.roles import (
    ALL_ROLES,
    NUTRITIONIST_ROLES,
    TENANT_ADMIN_ROLES,
    Permission,
    Role,
    permissions_for,
)
from nutriclinic.db.models import parse_uuid

TENANT_KEYS = ("tenant_id", "tenantId")


@dataclass(frozen=True)
class Requirement:
    roles: Optional[frozenset[Role]] = None
    permissions: Optional[frozenset[Permission]] = None


def require(
    roles: frozenset[Role] | set[Role] | None = None,
    permissions: set[Permission] | None = None,
) -> Requirement:
    return Requirement(
        roles=frozenset(roles) if roles is not None else None,
        permissions=frozenset(permissions) if permissions is not None else None,
    )


SUPER_ADMIN_ONLY = frozenset({Role.SUPER_ADMIN})
NUTRICIONISTA_ADMIN_ONLY = frozenset({Role.NUTRICIONISTA_ADMIN})
NUTRICIONISTA_OR_ADMIN = NUTRITIONIST_ROLES | SUPER_ADMIN_ONLY
AUTHENTICATED = ALL_ROLES

P = Permission

ROUTE_REQUIREMENTS: dict[str, Requirement] = {
    # Auth
    "auth.logout": require(AUTHENTICATED),
    "auth.profile": require(AUTHENTICATED),
    "auth.register_super_admin": require(SUPER_ADMIN_ONLY),

    # Users
    "users.list": require(SUPER_ADMIN_ONLY, {P.READ_USER}),
    "users.profile": require(AUTHENTICATED),
    "users.by_tenant": require(NUTRICIONISTA_OR_ADMIN),
    "users.my_patients": require(NUTRICIONISTA_OR_ADMIN, {P.READ_PATIENT}),
    "users.get": require(NUTRICIONISTA_OR_ADMIN),
    "users.create": require(NUTRICIONISTA_OR_ADMIN, {P.CREATE_PATIENT}),
    "users.create_nutricionista": require(SUPER_ADMIN_ONLY, {P.CREATE_USER}),
    "users.update_role": require(TENANT_ADMIN_ROLES, {P.MANAGE_NUTRICIONISTA_ROLES}),
    "users.deactivate": require(NUTRICIONISTA_OR_ADMIN),
    "users.tenant_nutricionistas": require(TENANT_ADMIN_ROLES),
    "users.invite_nutricionista": require(
        NUTRICIONISTA_ADMIN_ONLY, {P.INVITE_NUTRICIONISTA}
    ),

    # Admin (global)
    "admin.users": require(SUPER_ADMIN_ONLY, {P.READ_USER}),
    "admin.super_admins": require(SUPER_ADMIN_ONLY, {P.READ_USER}),
    "admin.create_super_admin": require(SUPER_ADMIN_ONLY, {P.CREATE_USER}),
    "admin.update_role": require(SUPER_ADMIN_ONLY, {P.UPDATE_USER}),
    "admin.deactivate_user": require(SUPER_ADMIN_ONLY, {P.DELETE_USER}),
    "admin.tenants": require(SUPER_ADMIN_ONLY, {P.READ_TENANT}),
    "admin.tenant_stats": require(SUPER_ADMIN_ONLY, {P.READ_TENANT}),
    "admin.tenant_settings": require(SUPER_ADMIN_ONLY, {P.MANAGE_TENANT_SETTINGS}),
    "admin.deactivate_tenant": require(SUPER_ADMIN_ONLY, {P.DELETE_TENANT}),
    "admin.activate_tenant": require(SUPER_ADMIN_ONLY, {P.UPDATE_TENANT}),
    "admin.system_overview": require(SUPER_ADMIN_ONLY, {P.READ_TENANT_REPORTS}),
    "admin.tenant_report": require(SUPER_ADMIN_ONLY, {P.READ_TENANT_REPORTS}),

    # Tenant admin (own tenant)
    "tenant_admin.users": require(TENANT_ADMIN_ROLES),
    "tenant_admin.nutricionistas": require(TENANT_ADMIN_ROLES),
    "tenant_admin.patients": require(TENANT_ADMIN_ROLES, {P.READ_PATIENT}),
    "tenant_admin.invite_nutricionista": require(
        NUTRICIONISTA_ADMIN_ONLY, {P.INVITE_NUTRICIONISTA}
    ),
    "tenant_admin.update_role": require(
        NUTRICIONISTA_ADMIN_ONLY, {P.MANAGE_NUTRICIONISTA_ROLES}
    ),
    "tenant_admin.update_user": require(TENANT_ADMIN_ROLES),
    "tenant_admin.remove_user": require(TENANT_ADMIN_ROLES),
    "tenant_admin.tenant_info": require(TENANT_ADMIN_ROLES, {P.READ_TENANT}),
    "tenant_admin.tenant_stats": require(TENANT_ADMIN_ROLES, {P.READ_TENANT}),
    "tenant_admin.tenant_settings": require(
        NUTRICIONISTA_ADMIN_ONLY, {P.MANAGE_TENANT_SETTINGS}
    ),
    "tenant_admin.reports": require(TENANT_ADMIN_ROLES, {P.READ_TENANT_REPORTS}),

    # Access logs
    "logs.my_access": require(AUTHENTICATED),
    "logs.tenant": require(TENANT_ADMIN_ROLES, {P.READ_TENANT_REPORTS}),
    "logs.failed_logins": require(TENANT_ADMIN_ROLES, {P.READ_TENANT_REPORTS}),
    "logs.stats": require(TENANT_ADMIN_ROLES, {P.READ_TENANT_REPORTS}),
}


def _role(value) -> Optional[Role]:
    try:
        return Role(value)
    except ValueError:
        return None


def _same_tenant(requested: str, own: Optional[str]) -> bool:
    if own is None:
        return False
    a, b = parse_uuid(requested), parse_uuid(own)
    if a is not None and b is not None:
        return a == b
    return str(requested) == str(own)


def check_access(
    claims: Optional[CurrentUser],
    requirement: Requirement,
    requested_tenant_id: Optional[str] = None,
) -> None:
    """Raise NotAuthenticated/Forbidden unless the claims satisfy requirement."""
    if requirement.roles is None and requirement.permissions is None:
        return

    if claims is None:
        raise NotAuthenticated()

    role = _role(claims.role)

    if requirement.roles is not None and role not in requirement.roles:
        required = ", ".join(sorted(r.value for r in requirement.roles))
        raise Forbidden(f"Access denied. Required roles: {required}")

    if requirement.permissions:
        granted = permissions_for(role)
        if not requirement.permissions <= granted:
            required = ", ".join(sorted(p.value for p in requirement.permissions))
            raise Forbidden(f"Access denied. Required permissions: {required}")

    if role != Role.SUPER_ADMIN and requested_tenant_id:
        if not _same_tenant(requested_tenant_id, claims.tenant_id):
            raise Forbidden("Access denied to another tenant's resources")


async def requested_tenant_id(request: Request) -> Optional[str]:
    """Tenant id the request refers to: path, then JSON body, then query."""
    for key in TENANT_KEYS:
        if request.path_params.get(key):
            return str(request.path_params[key])

    if request.method in ("POST", "PUT", "PATCH") and request.headers.get(
        "content-type", ""
    ).startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in TENANT_KEYS:
                if body.get(key):
                    return str(body[key])

    for key in TENANT_KEYS:
        if request.query_params.get(key):
            return request.query_params[key]

    return None


def authorize(operation: str):
    """Dependency factory: enforce ROUTE_REQUIREMENTS[operation].

    Unknown operation names fail at import time (KeyError), not per request.
    """
    requirement = ROUTE_REQUIREMENTS[operation]

    async def dependency(
        request: Request,
        identity: Optional[CurrentUser] = Depends(get_current_user_optional),
    ) -> Optional[CurrentUser]:
        check_access(identity, requirement, await requested_tenant_id(request))
        return identity

    return dependency
