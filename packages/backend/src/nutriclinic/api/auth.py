"""Auth API — login, registration, token refresh, logout.

Learn: Routes are thin. AuthService does the work and raises AuthError
subclasses, which the app-level handler turns into {"detail", "error"}:
- POST /auth/login → email/password (+ tenant subdomain) → token pair
- POST /auth/register → create account under per-role rules → token pair
- POST /auth/register/super-admin → super admins minting super admins
- POST /auth/refresh → refresh token (header or body) → new access token
- POST /auth/logout → revoke the stored refresh token
- GET /auth/profile → current user
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic.auth.dependencies import (
    CurrentUser,
    bearer_token,
    get_auth_service,
)
from nutriclinic.auth.errors import Forbidden
from nutriclinic.auth.guard import authorize
from nutriclinic.auth.roles import Role
from nutriclinic.auth.service import AuthService
from nutriclinic.db.engine import get_db
from nutriclinic.schemas.auth import (
    AccessTokenResponse,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from nutriclinic.schemas.user import UserRead
from nutriclinic.services.user_service import UserService

router = APIRouter(prefix="/auth")


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
):
    """Login with email, password and (except super admins) tenant subdomain."""
    # For the access log: failed attempts have no token to read these from.
    request.state.audit_email = body.email
    request.state.audit_tenant_subdomain = body.tenant_subdomain
    return await auth.login(body.email, body.password, body.tenant_subdomain)


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    body: RegisterRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Self-service registration. Super admins go through /register/super-admin."""
    if body.role == Role.SUPER_ADMIN:
        raise Forbidden("Super admins can only be created by another super admin")
    return await auth.register(body)


@router.post("/register/super-admin", response_model=TokenResponse, status_code=201)
async def register_super_admin(
    body: RegisterRequest,
    _: CurrentUser = Depends(authorize("auth.register_super_admin")),
    auth: AuthService = Depends(get_auth_service),
):
    """Create another super admin. The role in the body is forced."""
    body = body.model_copy(update={"role": Role.SUPER_ADMIN})
    return await auth.register(body)


@router.post("/refresh", response_model=AccessTokenResponse)
async def refresh(
    body: Optional[RefreshRequest] = None,
    authorization: Optional[str] = Header(None),
    auth: AuthService = Depends(get_auth_service),
):
    """Exchange a refresh token for a new access token.

    Learn: The token may come as JSON {"refresh_token": ...} or as
    "Authorization: Bearer <refresh>". The body wins when both are sent.
    """
    token = (body.refresh_token if body else None) or bearer_token(authorization)
    return await auth.refresh_token(token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    identity: CurrentUser = Depends(authorize("auth.logout")),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke the caller's refresh token."""
    return await auth.logout(identity.id)


@router.get("/profile", response_model=UserRead)
async def profile(
    identity: CurrentUser = Depends(authorize("auth.profile")),
    db: AsyncSession = Depends(get_db),
):
    """Get the current authenticated user's record."""
    return await UserService(db).get(identity.id)
