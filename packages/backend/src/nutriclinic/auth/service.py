"""Authentication engine — credentials in, verified identity + tokens out.

Learn: Everything that turns raw credentials into tokens lives here:
- validate_credentials: email/password + tenant context checks
- login / register: issue an access + refresh token pair
- refresh_token: new access token from a stored, still-valid refresh token
- logout: forget the stored refresh token (revocation)

Per-role registration rules are enforced BEFORE anything is written:
  super_admin               → must not have a tenant
  nutricionista_admin       → tenant optional; auto-created when missing
  nutricionista_funcionario → tenant required and active
  paciente                  → tenant + nutritionist required; the
                              nutritionist must be in the same tenant

Each public call is one unit of work: the stores flush, this class
commits once at the end. A nutritionist admin's new tenant, the user and
the owner back-fill therefore land together or not at all.
"""

import re
import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic.auth.errors import (
    AuthError,
    EmailInUse,
    InvalidCredentials,
    InvalidNutricionista,
    InvalidRefreshToken,
    InvalidTenant,
    NutricionistaRequired,
    TenantMismatch,
    TenantNotAllowed,
    TenantRequired,
)
from nutriclinic.auth.jwt import REFRESH, TokenError, TokenSigner, build_claims
from nutriclinic.auth.password import PasswordHasher, hash_token, token_matches
from nutriclinic.auth.roles import Role, is_nutritionist
from nutriclinic.db.models import Tenant, User, parse_uuid
from nutriclinic.schemas.auth import (
    AccessTokenResponse,
    MessageResponse,
    RegisterRequest,
    TokenResponse,
    UserSummary,
)
from nutriclinic.services.tenant_service import TenantService
from nutriclinic.services.user_service import UserService

logger = structlog.get_logger()


SUBDOMAIN_MAX_LENGTH = 100
TENANT_NAME_MAX_LENGTH = 200


def derive_subdomain(email: str) -> str:
    """Local part of the email, lower-cased, non-alphanumerics stripped.

    Capped to the tenants.subdomain column width.
    """
    local = email.split("@", 1)[0].lower()
    return re.sub(r"[^a-z0-9]", "", local)[:SUBDOMAIN_MAX_LENGTH]


class AuthService:
    """Credential validation, registration and token lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        signer: TokenSigner,
        hasher: PasswordHasher,
        users: Optional[UserService] = None,
        tenants: Optional[TenantService] = None,
    ):
        self.db = db
        self.signer = signer
        self.hasher = hasher
        self.users = users or UserService(db)
        self.tenants = tenants or TenantService(db)

    # ─── Credentials ────────────────────────────────────

    async def validate_credentials(
        self,
        email: str,
        password: str,
        tenant_subdomain: Optional[str] = None,
    ) -> User:
        """Return the user for a valid email/password/tenant combination.

        Learn: Unknown email and wrong password raise the same
        InvalidCredentials so callers can't probe which emails exist.
        Tenant problems are only reported after the password checked out.
        """
        user = await self.users.find_by_email(email)
        if not user:
            raise InvalidCredentials()

        if not self.hasher.verify(password, user.password_hash):
            raise InvalidCredentials()

        if user.role != Role.SUPER_ADMIN:
            if not tenant_subdomain:
                raise TenantRequired("Tenant subdomain is required for this user")

            tenant = await self.tenants.find_by_subdomain(tenant_subdomain)
            if not tenant or not tenant.is_active:
                raise InvalidTenant(status_code=401)

            if user.tenant_id != tenant.id:
                raise TenantMismatch()

        return user

    async def login(
        self,
        email: str,
        password: str,
        tenant_subdomain: Optional[str] = None,
    ) -> TokenResponse:
        try:
            user = await self.validate_credentials(email, password, tenant_subdomain)
        except AuthError as e:
            logger.warning("auth.login_failed", email=email, error=e.kind)
            raise

        await self._touch_last_login(user)
        response = await self._issue_tokens(user)
        await self.db.commit()

        logger.info("auth.login_succeeded", user_id=str(user.id), role=user.role)
        return response

    async def _touch_last_login(self, user: User) -> None:
        """Best effort: a failed timestamp write must not block the login."""
        user_id = user.id
        try:
            await self.users.update_last_login(user_id)
            await self.db.commit()
        except SQLAlchemyError as e:
            # rollback() expires `user`; reload it before anyone touches it
            await self.db.rollback()
            await self.db.refresh(user)
            logger.warning(
                "auth.last_login_update_failed", user_id=str(user_id), error=str(e)
            )

    # ─── Registration ───────────────────────────────────

    async def register(self, body: RegisterRequest) -> TokenResponse:
        """Create an account under the per-role rules and log it in."""
        user = await self.create_account(body)
        response = await self._issue_tokens(user)
        await self.db.commit()

        logger.info(
            "auth.registered",
            user_id=str(user.id),
            role=user.role,
            tenant_id=str(user.tenant_id) if user.tenant_id else None,
        )
        return response

    async def create_account(self, body: RegisterRequest) -> User:
        """Validate per-role invariants and persist the user (flush only).

        Learn: Used by register() and by the user-management endpoints,
        which create accounts without logging them in. The caller commits.
        """
        if await self.users.email_exists(body.email):
            raise EmailInUse()

        role = Role(body.role)
        tenant_id = body.tenant_id
        created_tenant: Optional[Tenant] = None

        if role == Role.NUTRICIONISTA_ADMIN and not tenant_id:
            created_tenant = await self._create_tenant_for(body)
            tenant_id = created_tenant.id
        else:
            await self._check_linkage(role, tenant_id, body.nutricionista_id)

        fields = {
            "email": body.email,
            "name": body.name,
            "password_hash": self.hasher.hash(body.password),
            "role": role.value,
            "tenant_id": tenant_id if role != Role.SUPER_ADMIN else None,
            "user_metadata": body.metadata,
        }
        if role == Role.PACIENTE:
            fields["nutricionista_id"] = body.nutricionista_id
        if is_nutritionist(role):
            fields["crn"] = body.crn
            fields["especialidade"] = body.especialidade

        user = await self.users.create(**fields)

        if created_tenant is not None:
            await self.tenants.update(created_tenant.id, owner_id=user.id)

        return user

    async def _check_linkage(
        self,
        role: Role,
        tenant_id: Optional[uuid.UUID],
        nutricionista_id: Optional[uuid.UUID],
    ) -> None:
        """Tenant / nutritionist rules for an existing-tenant role."""
        if role == Role.SUPER_ADMIN:
            if tenant_id:
                raise TenantNotAllowed()
            return

        if not tenant_id:
            raise TenantRequired(f"tenant_id is required for role {role.value}")
        if role == Role.PACIENTE and not nutricionista_id:
            raise NutricionistaRequired()

        await self._require_active_tenant(tenant_id)

        if role == Role.PACIENTE:
            nutricionista = await self.users.find_by_id(nutricionista_id)
            if (
                not nutricionista
                or not nutricionista.is_active
                or not is_nutritionist(nutricionista.role)
                or nutricionista.tenant_id != parse_uuid(tenant_id)
            ):
                raise InvalidNutricionista()

    async def _require_active_tenant(self, tenant_id: uuid.UUID | str) -> Tenant:
        tenant = await self.tenants.find_by_id(tenant_id)
        if not tenant or not tenant.is_active:
            raise InvalidTenant()
        return tenant

    async def _create_tenant_for(self, body: RegisterRequest) -> Tenant:
        """New clinic for a nutritionist admin, owner filled in later."""
        subdomain = body.tenant_subdomain or derive_subdomain(body.email)
        if not subdomain:
            subdomain = f"clinic-{uuid.uuid4().hex[:8]}"
        name = body.tenant_name or await self._derive_tenant_name(body.name, subdomain)

        return await self.tenants.create(
            name=name,
            subdomain=subdomain,
            owner_id=None,
            description=body.tenant_description,
            email=body.email,
        )

    async def _derive_tenant_name(self, user_name: str, subdomain: str) -> str:
        """The admin's own name, qualified by the subdomain when already taken."""
        if not await self.tenants.find_by_name(user_name):
            return user_name
        suffix = f" ({subdomain})"
        return user_name[: TENANT_NAME_MAX_LENGTH - len(suffix)] + suffix

    # ─── Roles ──────────────────────────────────────────

    async def assign_role(
        self,
        user_id: uuid.UUID | str,
        role: Role,
        tenant_id: Optional[uuid.UUID] = None,
        nutricionista_id: Optional[uuid.UUID] = None,
    ) -> User:
        """Change a user's role, keeping the per-role invariants (flush only).

        tenant_id moves the user to another tenant; None keeps the current
        one (super admins always end up without a tenant). A patient keeps
        its nutritionist unless a new one is given; either way it must be
        valid for the target tenant.
        """
        user = await self.users.get(user_id)
        role = Role(role)

        if role == Role.SUPER_ADMIN:
            target_tenant = None
        else:
            target_tenant = tenant_id or user.tenant_id
        nutricionista = nutricionista_id or user.nutricionista_id
        await self._check_linkage(role, target_tenant, nutricionista)

        await self.users.update_fields(
            user.id,
            role=role.value,
            tenant_id=target_tenant,
            nutricionista_id=nutricionista if role == Role.PACIENTE else None,
        )
        logger.info("user.role_changed", user_id=str(user.id), role=role.value)
        return user

    # ─── Tokens ─────────────────────────────────────────

    async def _issue_tokens(self, user: User) -> TokenResponse:
        """Sign a token pair and remember the refresh token's hash.

        Learn: Only one refresh token is live per user. Storing its hash
        overwrites the previous one, which is thereby revoked.
        """
        claims = build_claims(user)
        access_token = self.signer.create_access_token(claims)
        refresh_token = self.signer.create_refresh_token(claims)

        await self.users.set_refresh_token_hash(user.id, hash_token(refresh_token))

        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            user=UserSummary.model_validate(user),
        )

    async def refresh_token(self, token: Optional[str]) -> AccessTokenResponse:
        """Exchange a refresh token for a new access token.

        Learn: Every failure (bad signature, expired, wrong type, user gone
        or inactive, token revoked by logout) is the same
        InvalidRefreshToken, so callers learn nothing about which one hit.
        Claims come from the CURRENT user row, not the old token, so role
        or tenant changes show up immediately. The refresh token itself is
        not rotated.
        """
        if not token:
            raise InvalidRefreshToken()
        try:
            payload = self.signer.verify(token, expected_type=REFRESH)
        except TokenError:
            raise InvalidRefreshToken()

        user = await self.users.find_by_id(payload["sub"])
        if not user or not user.is_active:
            raise InvalidRefreshToken()
        if not token_matches(token, user.refresh_token_hash):
            raise InvalidRefreshToken()

        access_token = self.signer.create_access_token(build_claims(user))
        return AccessTokenResponse(access_token=access_token)

    async def logout(self, user_id: uuid.UUID | str) -> MessageResponse:
        """Revoke the user's refresh token. Idempotent."""
        await self.users.set_refresh_token_hash(user_id, None)
        await self.db.commit()
        logger.info("auth.logout", user_id=str(user_id))
        return MessageResponse(message="Logged out successfully")
