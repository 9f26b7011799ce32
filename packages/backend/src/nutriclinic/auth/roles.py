"""Roles, permissions and the static mapping between them.

Learn: Four fixed roles form a hierarchy:
  super_admin → nutricionista_admin → nutricionista_funcionario → paciente

Super admins are global (no tenant). Everybody else lives inside exactly
one tenant. Permissions are a closed set; there are no user-defined
policies. Everything here is pure data + predicates (no I/O).
"""

from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    NUTRICIONISTA_ADMIN = "nutricionista_admin"
    NUTRICIONISTA_FUNCIONARIO = "nutricionista_funcionario"
    PACIENTE = "paciente"


class Permission(str, Enum):
    # Users
    CREATE_USER = "create_user"
    READ_USER = "read_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"

    # Tenants
    CREATE_TENANT = "create_tenant"
    READ_TENANT = "read_tenant"
    UPDATE_TENANT = "update_tenant"
    DELETE_TENANT = "delete_tenant"
    MANAGE_TENANT_SETTINGS = "manage_tenant_settings"

    # Patients
    CREATE_PATIENT = "create_patient"
    READ_PATIENT = "read_patient"
    UPDATE_PATIENT = "update_patient"
    DELETE_PATIENT = "delete_patient"
    READ_OWN_DATA = "read_own_data"
    UPDATE_OWN_DATA = "update_own_data"

    # Nutritionists inside a tenant
    MANAGE_NUTRICIONISTA_ROLES = "manage_nutricionista_roles"
    INVITE_NUTRICIONISTA = "invite_nutricionista"
    REMOVE_NUTRICIONISTA = "remove_nutricionista"
    READ_TENANT_REPORTS = "read_tenant_reports"

    # Consultations
    CREATE_CONSULTATION = "create_consultation"
    READ_CONSULTATION = "read_consultation"
    UPDATE_CONSULTATION = "update_consultation"
    DELETE_CONSULTATION = "delete_consultation"


P = Permission

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.SUPER_ADMIN: frozenset({
        P.CREATE_USER, P.READ_USER, P.UPDATE_USER, P.DELETE_USER,
        P.CREATE_TENANT, P.READ_TENANT, P.UPDATE_TENANT, P.DELETE_TENANT,
        P.MANAGE_TENANT_SETTINGS,
        P.CREATE_PATIENT, P.READ_PATIENT, P.UPDATE_PATIENT, P.DELETE_PATIENT,
        P.MANAGE_NUTRICIONISTA_ROLES, P.INVITE_NUTRICIONISTA,
        P.REMOVE_NUTRICIONISTA, P.READ_TENANT_REPORTS,
        P.CREATE_CONSULTATION, P.READ_CONSULTATION,
        P.UPDATE_CONSULTATION, P.DELETE_CONSULTATION,
    }),
    Role.NUTRICIONISTA_ADMIN: frozenset({
        P.CREATE_PATIENT, P.READ_PATIENT, P.UPDATE_PATIENT, P.DELETE_PATIENT,
        P.READ_OWN_DATA, P.UPDATE_OWN_DATA,
        P.READ_TENANT, P.UPDATE_TENANT, P.MANAGE_TENANT_SETTINGS,
        P.MANAGE_NUTRICIONISTA_ROLES, P.INVITE_NUTRICIONISTA,
        P.REMOVE_NUTRICIONISTA, P.READ_TENANT_REPORTS,
        P.CREATE_CONSULTATION, P.READ_CONSULTATION,
        P.UPDATE_CONSULTATION, P.DELETE_CONSULTATION,
    }),
    Role.NUTRICIONISTA_FUNCIONARIO: frozenset({
        P.CREATE_PATIENT, P.READ_PATIENT, P.UPDATE_PATIENT,
        P.READ_OWN_DATA, P.UPDATE_OWN_DATA,
        P.CREATE_CONSULTATION, P.READ_CONSULTATION, P.UPDATE_CONSULTATION,
    }),
    Role.PACIENTE: frozenset({
        P.READ_OWN_DATA, P.UPDATE_OWN_DATA,
    }),
}

NUTRITIONIST_ROLES = frozenset({Role.NUTRICIONISTA_ADMIN, Role.NUTRICIONISTA_FUNCIONARIO})
TENANT_ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.NUTRICIONISTA_ADMIN})
ALL_ROLES = frozenset(Role)


def _coerce(role: Role | str | None) -> Role | None:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def permissions_for(role: Role | str | None) -> frozenset[Permission]:
    """Permissions granted to a role. Unknown roles get nothing."""
    coerced = _coerce(role)
    if coerced is None:
        return frozenset()
    return ROLE_PERMISSIONS[coerced]


def is_nutritionist(role: Role | str | None) -> bool:
    """True for nutritionist admins and staff nutritionists."""
    return _coerce(role) in NUTRITIONIST_ROLES


def is_tenant_admin(role: Role | str | None) -> bool:
    """True for super admins and nutritionist admins."""
    return _coerce(role) in TENANT_ADMIN_ROLES
