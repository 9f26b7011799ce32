"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user from the request's bearer token.

The TokenSigner and PasswordHasher are built once in create_app() from the
frozen Settings and parked on app.state; dependencies fetch them from
there instead of reaching for globals.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic.auth.errors import NotAuthenticated
from nutriclinic.auth.jwt import ACCESS, TokenError, TokenSigner
from nutriclinic.auth.password import PasswordHasher
from nutriclinic.auth.roles import Role
from nutriclinic.auth.service import AuthService
from nutriclinic.db.engine import get_db
from nutriclinic.db.models import parse_uuid


class CurrentUser:
    """Claims of the authenticated caller, decoded from an access token.

    Learn: This is the per-request auth context. Handlers use tenant_id to
    scope queries; the guard uses role for permission checks.
    """

    def __init__(
        self,
        id: str,
        email: str,
        role: str,
        tenant_id: Optional[str] = None,
    ):
        self.id = id
        self.email = email
        self.role = role
        self.tenant_id = tenant_id

    @classmethod
    def from_claims(cls, payload: dict) -> "CurrentUser":
        return cls(
            id=payload["sub"],
            email=payload.get("email", ""),
            role=payload.get("role", ""),
            tenant_id=payload.get("tenantId"),
        )

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN

    @property
    def user_uuid(self) -> Optional[uuid.UUID]:
        return parse_uuid(self.id)

    @property
    def tenant_uuid(self) -> Optional[uuid.UUID]:
        return parse_uuid(self.tenant_id)


def get_token_signer(request: Request) -> TokenSigner:
    return request.app.state.token_signer


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.password_hasher


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> AuthService:
    return AuthService(db, signer, hasher)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
    signer: TokenSigner = Depends(get_token_signer),
) -> Optional[CurrentUser]:
    """Extract current user (optional — returns None if no token).

    Learn: This is the "soft" auth dependency. A present but invalid token
    is still an error; only a missing token yields None.
    """
    token = bearer_token(authorization)
    if not token:
        return None
    try:
        payload = signer.verify(token, expected_type=ACCESS)
    except TokenError as e:
        raise NotAuthenticated(str(e))
    return CurrentUser.from_claims(payload)


async def get_current_user(
    identity: Optional[CurrentUser] = Depends(get_current_user_optional),
) -> CurrentUser:
    """Extract current user (required — 401 if no token)."""
    if not identity:
        raise NotAuthenticated()
    return identity
