"""Test fixtures — a fresh database per test plus seeding helpers.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own engine on a throwaway SQLite file (aiosqlite),
   or on NUTRICLINIC_TEST_DATABASE_URL when set (e.g. a Postgres test db).
   Tables are dropped and recreated, so tests never see each other's rows.
2. The app is built with create_app(test_settings, session_factory=...):
   routes get sessions through an overridden get_db, the access log
   middleware writes through the same factory. Both commit for real.
3. Seed writes fixtures straight to the database and mints tokens with
   the test secret, so most tests skip the register + login dance.

Rate limiting is off in tests: lifespan never runs under ASGITransport,
so Redis is never connected and the limiter passes everything through.
"""

import os
import uuid
from dataclasses import dataclass
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nutriclinic.auth.jwt import TokenSigner, build_claims
from nutriclinic.auth.password import PasswordHasher
from nutriclinic.auth.roles import Role
from nutriclinic.auth.service import AuthService
from nutriclinic.config import Settings
from nutriclinic.db.engine import get_db
from nutriclinic.db.models import Base, Tenant, User
from nutriclinic.main import create_app

TEST_SECRET = "test-secret"
PASSWORD = "secret123"


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        jwt_secret=TEST_SECRET,
        bcrypt_rounds=4,
        environment="development",
        redis_url="redis://127.0.0.1:1/0",  # nothing listens here
        access_log_enabled=True,
    )


@pytest.fixture()
def signer() -> TokenSigner:
    return TokenSigner(TEST_SECRET)


@pytest.fixture()
def hasher() -> PasswordHasher:
    # Lowest bcrypt cost; hashing dominates test time otherwise
    return PasswordHasher(rounds=4)


@pytest_asyncio.fixture()
async def engine(tmp_path):
    url = os.environ.get("NUTRICLINIC_TEST_DATABASE_URL") or (
        f"sqlite+aiosqlite:///{tmp_path / 'nutriclinic.db'}"
    )
    eng = create_async_engine(url, echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """Session for service-level tests. Use a fresh one to re-read rows."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def auth_service(db_session, signer, hasher) -> AuthService:
    return AuthService(db_session, signer, hasher)


@pytest_asyncio.fixture()
async def app(test_settings, session_factory):
    application = create_app(test_settings, session_factory=session_factory)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client for the real auth pipeline (no identity override)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ═══════════════════════════════════════════════════════════
# Seeding
# ═══════════════════════════════════════════════════════════


@dataclass
class Clinic:
    tenant: Tenant
    admin: User
    staff: User
    patient: User


def unique_email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


class Seed:
    """Writes rows directly and mints tokens for them."""

    def __init__(self, factory, hasher: PasswordHasher, signer: TokenSigner):
        self.factory = factory
        self.hasher = hasher
        self.signer = signer

    async def tenant(
        self,
        subdomain: Optional[str] = None,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> Tenant:
        subdomain = subdomain or f"clinic-{uuid.uuid4().hex[:8]}"
        async with self.factory() as db:
            tenant = Tenant(
                name=name or f"Clinic {subdomain}",
                subdomain=subdomain,
                is_active=is_active,
            )
            db.add(tenant)
            await db.commit()
        return tenant

    async def user(
        self,
        role: Role,
        tenant: Optional[Tenant] = None,
        nutricionista: Optional[User] = None,
        email: Optional[str] = None,
        password: str = PASSWORD,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        role = Role(role)
        async with self.factory() as db:
            user = User(
                email=email or unique_email(role.value),
                name=name or role.value.replace("_", " ").title(),
                password_hash=self.hasher.hash(password),
                role=role.value,
                tenant_id=tenant.id if tenant else None,
                nutricionista_id=nutricionista.id if nutricionista else None,
                is_active=is_active,
            )
            db.add(user)
            await db.commit()
        return user

    async def super_admin(self, **kwargs) -> User:
        return await self.user(Role.SUPER_ADMIN, **kwargs)

    async def clinic(self, subdomain: Optional[str] = None) -> Clinic:
        """Tenant with an owner admin, one staff nutritionist and their patient."""
        tenant = await self.tenant(subdomain)
        admin = await self.user(Role.NUTRICIONISTA_ADMIN, tenant=tenant)
        staff = await self.user(Role.NUTRICIONISTA_FUNCIONARIO, tenant=tenant)
        patient = await self.user(Role.PACIENTE, tenant=tenant, nutricionista=staff)
        async with self.factory() as db:
            row = await db.get(Tenant, tenant.id)
            row.owner_id = admin.id
            await db.commit()
        tenant.owner_id = admin.id
        return Clinic(tenant=tenant, admin=admin, staff=staff, patient=patient)

    def token(self, user: User) -> str:
        return self.signer.create_access_token(build_claims(user))

    def headers(self, user: User) -> dict:
        return {"Authorization": f"Bearer {self.token(user)}"}

    async def reload(self, model, pk):
        """Fresh read of a row, bypassing any session's identity map."""
        async with self.factory() as db:
            return await db.get(model, pk)


@pytest_asyncio.fixture()
async def seed(session_factory, hasher, signer) -> Seed:
    return Seed(session_factory, hasher, signer)


@pytest.fixture()
def login(client):
    """POST /auth/login for a seeded user; returns the response."""

    async def _login(user: User, tenant: Optional[Tenant] = None, password: str = PASSWORD):
        body = {"email": user.email, "password": password}
        if tenant is not None:
            body["tenant_subdomain"] = tenant.subdomain
        return await client.post("/api/v1/auth/login", json=body)

    return _login
