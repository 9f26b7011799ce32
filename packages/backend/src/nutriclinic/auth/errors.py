"""Auth domain errors.

Learn: Services raise these instead of HTTPException so they stay usable
outside FastAPI (CLI, tests). Each error carries a stable `kind` (what
clients switch on) and the HTTP status it maps to. main.py registers one
exception handler that renders {"detail": ..., "error": kind}.
"""


class AuthError(Exception):
    """Base class for authentication/authorization failures."""

    kind = "AuthError"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code


class InvalidCredentials(AuthError):
    kind = "InvalidCredentials"
    status_code = 401
    default_message = "Invalid credentials"


class TenantRequired(AuthError):
    kind = "TenantRequired"
    default_message = "Tenant is required for this role"


class TenantNotAllowed(AuthError):
    kind = "TenantNotAllowed"
    default_message = "Super admin must not belong to a tenant"


class NutricionistaRequired(AuthError):
    kind = "NutricionistaRequired"
    default_message = "Nutricionista is required for patients"


class InvalidTenant(AuthError):
    kind = "InvalidTenant"
    default_message = "Invalid or inactive tenant"


class TenantMismatch(AuthError):
    kind = "TenantMismatch"
    status_code = 401
    default_message = "User does not belong to this tenant"


class InvalidNutricionista(AuthError):
    kind = "InvalidNutricionista"
    default_message = "Invalid nutricionista or not in the same tenant"


class EmailInUse(AuthError):
    kind = "EmailInUse"
    status_code = 409
    default_message = "Email already in use"


class SubdomainInUse(AuthError):
    kind = "SubdomainInUse"
    status_code = 409
    default_message = "Subdomain already in use"


class NameInUse(AuthError):
    kind = "NameInUse"
    status_code = 409
    default_message = "Tenant name already in use"


class InvalidRefreshToken(AuthError):
    kind = "InvalidRefreshToken"
    status_code = 401
    default_message = "Invalid refresh token"


class NotAuthenticated(AuthError):
    kind = "NotAuthenticated"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(AuthError):
    kind = "Forbidden"
    status_code = 403
    default_message = "Access denied"


class UserNotFound(AuthError):
    kind = "UserNotFound"
    status_code = 404
    default_message = "User not found"


class TenantNotFound(AuthError):
    kind = "TenantNotFound"
    status_code = 404
    default_message = "Tenant not found"
