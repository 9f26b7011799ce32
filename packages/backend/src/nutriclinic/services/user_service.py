"""User service — the credential store plus user-management queries.

Learn: Service layer separates business logic from HTTP routing.
Write methods only flush(); the caller owns the transaction and commits
(AuthService commits its own unit of work, routes commit after management
calls). That keeps "create tenant → create user → set owner" atomic.
"""

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic.auth.errors import EmailInUse, UserNotFound
from nutriclinic.auth.roles import NUTRITIONIST_ROLES, Role
from nutriclinic.db.models import User, parse_uuid, utcnow

logger = structlog.get_logger()


class UserService:
    """Persistence and queries for user records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ────────────────────────────────────────

    async def find_by_email(self, email: str) -> User | None:
        """Active user with this exact email (case-sensitive)."""
        result = await self.db.execute(
            select(User).where(User.email == email, User.is_active.is_(True))
        )
        return result.scalars().first()

    async def email_exists(self, email: str) -> bool:
        """Any user (active or not) already holding this email."""
        result = await self.db.execute(select(User.id).where(User.email == email))
        return result.first() is not None

    async def find_by_id(self, user_id: uuid.UUID | str) -> User | None:
        uid = parse_uuid(user_id)
        if uid is None:
            return None
        return await self.db.get(User, uid)

    async def get(self, user_id: uuid.UUID | str) -> User:
        """Like find_by_id but raises UserNotFound."""
        user = await self.find_by_id(user_id)
        if not user:
            raise UserNotFound()
        return user

    async def find_all(self) -> list[User]:
        result = await self.db.execute(
            select(User).where(User.is_active.is_(True)).order_by(User.created_at)
        )
        return list(result.scalars().all())

    async def find_by_tenant(self, tenant_id: uuid.UUID | str) -> list[User]:
        tid = parse_uuid(tenant_id)
        if tid is None:
            return []
        result = await self.db.execute(
            select(User)
            .where(User.tenant_id == tid, User.is_active.is_(True))
            .order_by(User.created_at)
        )
        return list(result.scalars().all())

    async def find_patients_by_nutricionista(
        self, nutricionista_id: uuid.UUID | str
    ) -> list[User]:
        nid = parse_uuid(nutricionista_id)
        if nid is None:
            return []
        result = await self.db.execute(
            select(User)
            .where(
                User.nutricionista_id == nid,
                User.role == Role.PACIENTE.value,
                User.is_active.is_(True),
            )
            .order_by(User.name)
        )
        return list(result.scalars().all())

    async def find_nutricionistas_in_tenant(
        self, tenant_id: uuid.UUID | str
    ) -> list[User]:
        tid = parse_uuid(tenant_id)
        if tid is None:
            return []
        result = await self.db.execute(
            select(User)
            .where(
                User.tenant_id == tid,
                User.role.in_([r.value for r in NUTRITIONIST_ROLES]),
                User.is_active.is_(True),
            )
            .order_by(User.name)
        )
        return list(result.scalars().all())

    async def find_super_admins(self) -> list[User]:
        result = await self.db.execute(
            select(User).where(
                User.role == Role.SUPER_ADMIN.value, User.is_active.is_(True)
            )
        )
        return list(result.scalars().all())

    # ─── Writes (flush only) ────────────────────────────

    async def create(self, **fields: Any) -> User:
        """Insert a user. The unique index on email is authoritative.

        Learn: A pre-check gives the common case a clean error; the
        IntegrityError branch catches the race where two requests both
        passed the pre-check. Rolling back discards the whole unit of work
        (including a tenant created moments earlier in the same session).
        """
        if await self.email_exists(fields["email"]):
            raise EmailInUse()

        user = User(**fields)
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise EmailInUse()
        return user

    async def update_fields(self, user_id: uuid.UUID | str, **fields: Any) -> None:
        """Set columns on a user. Silently does nothing for unknown ids."""
        user = await self.find_by_id(user_id)
        if not user:
            return
        for key, value in fields.items():
            setattr(user, key, value)
        await self.db.flush()

    async def update_last_login(self, user_id: uuid.UUID | str) -> None:
        await self.update_fields(user_id, last_login=utcnow())

    async def set_refresh_token_hash(
        self, user_id: uuid.UUID | str, token_hash: str | None
    ) -> None:
        await self.update_fields(user_id, refresh_token_hash=token_hash)

    async def update(self, user_id: uuid.UUID | str, **fields: Any) -> User:
        """Update profile fields, raising UserNotFound for unknown ids."""
        user = await self.get(user_id)
        if "email" in fields and fields["email"] != user.email:
            if await self.email_exists(fields["email"]):
                raise EmailInUse()
        for key, value in fields.items():
            setattr(user, key, value)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise EmailInUse()
        return user

    async def deactivate(self, user_id: uuid.UUID | str) -> User:
        """Soft delete. Also drops the stored refresh token."""
        user = await self.get(user_id)
        user.is_active = False
        user.refresh_token_hash = None
        await self.db.flush()
        logger.info("user.deactivated", user_id=str(user.id))
        return user
