"""AuthService — registration rules, credential checks, token lifecycle.

Learn: These run against the service directly (no HTTP). Rows seeded via
`seed` are committed through their own sessions; assertions about what
got persisted re-read through `seed.reload` so they never see the
service session's cached objects.
"""

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from nutriclinic.auth.errors import (
    EmailInUse,
    InvalidCredentials,
    InvalidNutricionista,
    InvalidRefreshToken,
    InvalidTenant,
    NutricionistaRequired,
    SubdomainInUse,
    TenantMismatch,
    TenantNotAllowed,
    TenantRequired,
)
from nutriclinic.auth.jwt import ACCESS, REFRESH
from nutriclinic.auth.password import hash_token
from nutriclinic.auth.roles import Role
from nutriclinic.auth.service import derive_subdomain
from nutriclinic.db.models import Tenant, User
from nutriclinic.schemas.auth import RegisterRequest
from nutriclinic.services.tenant_service import TenantService
from nutriclinic.services.user_service import UserService


def _register(role: Role, **fields) -> RegisterRequest:
    fields.setdefault("email", f"{role.value}-{uuid.uuid4().hex[:8]}@example.com")
    fields.setdefault("password", "secret123")
    fields.setdefault("name", "Someone")
    return RegisterRequest(role=role, **fields)


async def _count(session_factory, model, *where) -> int:
    async with session_factory() as db:
        q = select(func.count()).select_from(model)
        if where:
            q = q.where(*where)
        return (await db.execute(q)).scalar_one()


# ═══════════════════════════════════════════════════════════
# Registration rules
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_super_admin_with_tenant_rejected(auth_service, seed):
    tenant = await seed.tenant()
    with pytest.raises(TenantNotAllowed):
        await auth_service.register(_register(Role.SUPER_ADMIN, tenant_id=tenant.id))


@pytest.mark.asyncio
async def test_super_admin_registers_without_tenant(auth_service, signer):
    resp = await auth_service.register(_register(Role.SUPER_ADMIN))
    assert resp.user.role == Role.SUPER_ADMIN
    assert resp.user.tenant_id is None
    assert "tenantId" not in signer.verify(resp.access_token)


@pytest.mark.asyncio
async def test_staff_requires_tenant(auth_service):
    with pytest.raises(TenantRequired):
        await auth_service.register(_register(Role.NUTRICIONISTA_FUNCIONARIO))


@pytest.mark.asyncio
async def test_staff_requires_active_tenant(auth_service, seed):
    tenant = await seed.tenant(is_active=False)
    with pytest.raises(InvalidTenant):
        await auth_service.register(
            _register(Role.NUTRICIONISTA_FUNCIONARIO, tenant_id=tenant.id)
        )


@pytest.mark.asyncio
async def test_staff_unknown_tenant(auth_service):
    with pytest.raises(InvalidTenant):
        await auth_service.register(
            _register(Role.NUTRICIONISTA_FUNCIONARIO, tenant_id=uuid.uuid4())
        )


@pytest.mark.asyncio
async def test_paciente_requires_tenant_then_nutricionista(auth_service, seed):
    tenant = await seed.tenant()
    with pytest.raises(TenantRequired):
        await auth_service.register(_register(Role.PACIENTE))
    with pytest.raises(NutricionistaRequired):
        await auth_service.register(_register(Role.PACIENTE, tenant_id=tenant.id))


@pytest.mark.asyncio
async def test_paciente_nutricionista_from_other_tenant(auth_service, seed):
    ours = await seed.clinic()
    theirs = await seed.clinic()
    with pytest.raises(InvalidNutricionista):
        await auth_service.register(
            _register(
                Role.PACIENTE,
                tenant_id=ours.tenant.id,
                nutricionista_id=theirs.staff.id,
            )
        )


@pytest.mark.asyncio
async def test_paciente_nutricionista_must_be_a_nutritionist(auth_service, seed):
    clinic = await seed.clinic()
    with pytest.raises(InvalidNutricionista):
        await auth_service.register(
            _register(
                Role.PACIENTE,
                tenant_id=clinic.tenant.id,
                nutricionista_id=clinic.patient.id,
            )
        )


@pytest.mark.asyncio
async def test_paciente_nutricionista_must_be_active(auth_service, seed):
    tenant = await seed.tenant()
    gone = await seed.user(Role.NUTRICIONISTA_FUNCIONARIO, tenant=tenant, is_active=False)
    with pytest.raises(InvalidNutricionista):
        await auth_service.register(
            _register(Role.PACIENTE, tenant_id=tenant.id, nutricionista_id=gone.id)
        )


@pytest.mark.asyncio
async def test_paciente_registers_with_valid_linkage(auth_service, seed):
    clinic = await seed.clinic()
    resp = await auth_service.register(
        _register(
            Role.PACIENTE,
            tenant_id=clinic.tenant.id,
            nutricionista_id=clinic.admin.id,
        )
    )
    stored = await seed.reload(User, resp.user.id)
    assert stored.tenant_id == clinic.tenant.id
    assert stored.nutricionista_id == clinic.admin.id


@pytest.mark.asyncio
async def test_duplicate_email_rejected(auth_service, seed):
    existing = await seed.super_admin()
    with pytest.raises(EmailInUse):
        await auth_service.register(_register(Role.SUPER_ADMIN, email=existing.email))


@pytest.mark.asyncio
async def test_inactive_user_still_holds_email(auth_service, seed):
    gone = await seed.super_admin(is_active=False)
    with pytest.raises(EmailInUse):
        await auth_service.register(_register(Role.SUPER_ADMIN, email=gone.email))


# ═══════════════════════════════════════════════════════════
# Nutritionist admin → new clinic
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_admin_without_tenant_creates_and_owns_one(auth_service, seed, session_factory):
    resp = await auth_service.register(
        _register(
            Role.NUTRICIONISTA_ADMIN,
            tenant_name="Clínica Verde",
            tenant_subdomain="verde",
            crn="CRN-3 12345",
        )
    )
    async with session_factory() as db:
        tenant = await TenantService(db).find_by_subdomain("verde")
    assert tenant is not None
    assert tenant.name == "Clínica Verde"
    assert tenant.owner_id == resp.user.id
    assert resp.user.tenant_id == tenant.id

    stored = await seed.reload(User, resp.user.id)
    assert stored.crn == "CRN-3 12345"


@pytest.mark.asyncio
async def test_admin_subdomain_derived_from_email(auth_service, session_factory):
    resp = await auth_service.register(
        _register(Role.NUTRICIONISTA_ADMIN, email="Dr.Ana+Nutri@clinic.com", name="Ana")
    )
    async with session_factory() as db:
        tenant = await TenantService(db).find_by_id(resp.user.tenant_id)
    assert tenant.subdomain == "draananutri"
    assert tenant.name == "Ana"


def test_derive_subdomain():
    assert derive_subdomain("joao.silva@x.com") == "joaosilva"
    assert derive_subdomain("ABC_123@x.com") == "abc123"
    assert derive_subdomain("+._@x.com") == ""


def test_derive_subdomain_fits_column():
    assert derive_subdomain("a" * 150 + "@x.com") == "a" * 100


@pytest.mark.asyncio
async def test_admin_with_long_email_gets_capped_subdomain(auth_service, session_factory):
    local = "nutri" * 30
    resp = await auth_service.register(
        _register(Role.NUTRICIONISTA_ADMIN, email=f"{local}@clinic.com")
    )
    async with session_factory() as db:
        tenant = await TenantService(db).find_by_id(resp.user.tenant_id)
    assert tenant.subdomain == local[:100]


@pytest.mark.asyncio
async def test_admins_sharing_a_name_get_distinct_tenants(auth_service, session_factory):
    first = await auth_service.register(
        _register(Role.NUTRICIONISTA_ADMIN, email="ana.silva@one.com", name="Ana Silva")
    )
    second = await auth_service.register(
        _register(Role.NUTRICIONISTA_ADMIN, email="anasilva2@two.com", name="Ana Silva")
    )
    async with session_factory() as db:
        tenants = TenantService(db)
        a = await tenants.find_by_id(first.user.tenant_id)
        b = await tenants.find_by_id(second.user.tenant_id)
    assert a.name == "Ana Silva"
    assert b.name == "Ana Silva (anasilva2)"


@pytest.mark.asyncio
async def test_admin_with_existing_tenant_joins_it(auth_service, seed):
    tenant = await seed.tenant()
    resp = await auth_service.register(
        _register(Role.NUTRICIONISTA_ADMIN, tenant_id=tenant.id)
    )
    assert resp.user.tenant_id == tenant.id


@pytest.mark.asyncio
async def test_admin_subdomain_taken(auth_service, seed):
    await seed.tenant("taken")
    with pytest.raises(SubdomainInUse):
        await auth_service.register(
            _register(Role.NUTRICIONISTA_ADMIN, tenant_subdomain="taken")
        )


@pytest.mark.asyncio
async def test_subdomain_race_detected_by_unique_index(
    auth_service, seed, session_factory, monkeypatch
):
    """Two registrations pass the pre-check; the index catches the second."""
    await seed.tenant("raced", name="First Clinic")

    original = TenantService.find_by_subdomain
    calls = {"n": 0}

    async def miss_once(self, subdomain):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await original(self, subdomain)

    monkeypatch.setattr(TenantService, "find_by_subdomain", miss_once)

    with pytest.raises(SubdomainInUse):
        await auth_service.register(
            _register(
                Role.NUTRICIONISTA_ADMIN,
                tenant_subdomain="raced",
                tenant_name="Second Clinic",
            )
        )
    assert await _count(session_factory, Tenant, Tenant.subdomain == "raced") == 1


@pytest.mark.asyncio
async def test_failed_user_insert_rolls_back_new_tenant(
    auth_service, session_factory, seed, monkeypatch
):
    """Email race after the tenant was flushed: neither row survives."""
    existing = await seed.super_admin()

    async def never_exists(self, email):
        return False

    monkeypatch.setattr(UserService, "email_exists", never_exists)

    with pytest.raises(EmailInUse):
        await auth_service.register(
            _register(
                Role.NUTRICIONISTA_ADMIN,
                email=existing.email,
                tenant_subdomain="orphan",
            )
        )
    assert await _count(session_factory, Tenant, Tenant.subdomain == "orphan") == 0
    assert await _count(session_factory, User, User.email == existing.email) == 1


# ═══════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_valid_credentials(auth_service, seed):
    clinic = await seed.clinic()
    user = await auth_service.validate_credentials(
        clinic.staff.email, "secret123", clinic.tenant.subdomain
    )
    assert user.id == clinic.staff.id


@pytest.mark.asyncio
async def test_super_admin_needs_no_subdomain(auth_service, seed):
    admin = await seed.super_admin()
    user = await auth_service.validate_credentials(admin.email, "secret123")
    assert user.id == admin.id


@pytest.mark.asyncio
async def test_unknown_email_and_wrong_password_look_alike(auth_service, seed):
    clinic = await seed.clinic()
    with pytest.raises(InvalidCredentials) as unknown:
        await auth_service.validate_credentials(
            "nobody@example.com", "secret123", clinic.tenant.subdomain
        )
    with pytest.raises(InvalidCredentials) as wrong:
        await auth_service.validate_credentials(
            clinic.staff.email, "nope-nope", clinic.tenant.subdomain
        )
    assert unknown.value.message == wrong.value.message


@pytest.mark.asyncio
async def test_inactive_user_cannot_log_in(auth_service, seed):
    tenant = await seed.tenant()
    user = await seed.user(Role.NUTRICIONISTA_FUNCIONARIO, tenant=tenant, is_active=False)
    with pytest.raises(InvalidCredentials):
        await auth_service.validate_credentials(user.email, "secret123", tenant.subdomain)


@pytest.mark.asyncio
async def test_missing_subdomain(auth_service, seed):
    clinic = await seed.clinic()
    with pytest.raises(TenantRequired):
        await auth_service.validate_credentials(clinic.patient.email, "secret123")


@pytest.mark.asyncio
async def test_unknown_or_inactive_tenant(auth_service, seed):
    tenant = await seed.tenant(is_active=False)
    user = await seed.user(Role.NUTRICIONISTA_FUNCIONARIO, tenant=tenant)
    with pytest.raises(InvalidTenant) as exc:
        await auth_service.validate_credentials(user.email, "secret123", tenant.subdomain)
    assert exc.value.status_code == 401
    with pytest.raises(InvalidTenant):
        await auth_service.validate_credentials(user.email, "secret123", "no-such-clinic")


@pytest.mark.asyncio
async def test_tenant_mismatch_after_password_check(auth_service, seed):
    ours = await seed.clinic()
    theirs = await seed.clinic()
    with pytest.raises(TenantMismatch):
        await auth_service.validate_credentials(
            ours.staff.email, "secret123", theirs.tenant.subdomain
        )
    # Wrong password wins over the wrong tenant
    with pytest.raises(InvalidCredentials):
        await auth_service.validate_credentials(
            ours.staff.email, "bad-password", theirs.tenant.subdomain
        )


# ═══════════════════════════════════════════════════════════
# Tokens
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_issues_pair_and_stamps_last_login(auth_service, seed, signer):
    clinic = await seed.clinic()
    resp = await auth_service.login(
        clinic.admin.email, "secret123", clinic.tenant.subdomain
    )
    access = signer.verify(resp.access_token, expected_type=ACCESS)
    refresh = signer.verify(resp.refresh_token, expected_type=REFRESH)
    assert access["sub"] == refresh["sub"] == str(clinic.admin.id)
    assert access["tenantId"] == str(clinic.tenant.id)
    assert access["role"] == "nutricionista_admin"

    stored = await seed.reload(User, clinic.admin.id)
    assert stored.last_login is not None
    assert stored.refresh_token_hash == hash_token(resp.refresh_token)


@pytest.mark.asyncio
async def test_login_survives_failed_last_login_write(auth_service, seed, signer, monkeypatch):
    admin = await seed.super_admin()

    async def broken(self, user_id):
        raise OperationalError("UPDATE users SET last_login", {}, Exception("db gone"))

    monkeypatch.setattr(UserService, "update_last_login", broken)

    resp = await auth_service.login(admin.email, "secret123")
    assert signer.verify(resp.access_token, expected_type=ACCESS)["sub"] == str(admin.id)
    assert resp.user.email == admin.email

    stored = await seed.reload(User, admin.id)
    assert stored.last_login is None
    assert stored.refresh_token_hash == hash_token(resp.refresh_token)


@pytest.mark.asyncio
async def test_refresh_returns_new_access_token(auth_service, seed, signer):
    admin = await seed.super_admin()
    pair = await auth_service.login(admin.email, "secret123")
    refreshed = await auth_service.refresh_token(pair.refresh_token)
    assert refreshed.access_token != pair.access_token
    assert signer.verify(refreshed.access_token)["sub"] == str(admin.id)


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(auth_service, seed):
    admin = await seed.super_admin()
    pair = await auth_service.login(admin.email, "secret123")
    with pytest.raises(InvalidRefreshToken):
        await auth_service.refresh_token(pair.access_token)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "", "garbage"])
async def test_refresh_rejects_junk(auth_service, token):
    with pytest.raises(InvalidRefreshToken):
        await auth_service.refresh_token(token)


@pytest.mark.asyncio
async def test_second_login_revokes_first_refresh(auth_service, seed):
    admin = await seed.super_admin()
    first = await auth_service.login(admin.email, "secret123")
    await auth_service.login(admin.email, "secret123")
    with pytest.raises(InvalidRefreshToken):
        await auth_service.refresh_token(first.refresh_token)


@pytest.mark.asyncio
async def test_logout_revokes_and_is_idempotent(auth_service, seed):
    admin = await seed.super_admin()
    pair = await auth_service.login(admin.email, "secret123")

    msg = await auth_service.logout(admin.id)
    assert msg.message == "Logged out successfully"
    await auth_service.logout(admin.id)

    with pytest.raises(InvalidRefreshToken):
        await auth_service.refresh_token(pair.refresh_token)


@pytest.mark.asyncio
async def test_refresh_reflects_current_role(auth_service, seed, signer):
    clinic = await seed.clinic()
    pair = await auth_service.login(
        clinic.staff.email, "secret123", clinic.tenant.subdomain
    )
    await auth_service.assign_role(
        clinic.staff.id, Role.PACIENTE, nutricionista_id=clinic.admin.id
    )
    await auth_service.db.commit()

    refreshed = await auth_service.refresh_token(pair.refresh_token)
    assert signer.verify(refreshed.access_token)["role"] == "paciente"


@pytest.mark.asyncio
async def test_refresh_rejected_for_deactivated_user(auth_service, seed, session_factory):
    admin = await seed.super_admin()
    pair = await auth_service.login(admin.email, "secret123")
    async with session_factory() as db:
        await UserService(db).deactivate(admin.id)
        await db.commit()
    auth_service.db.expire_all()
    with pytest.raises(InvalidRefreshToken):
        await auth_service.refresh_token(pair.refresh_token)


# ═══════════════════════════════════════════════════════════
# Role assignment
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_assign_paciente_needs_nutricionista(auth_service, seed):
    clinic = await seed.clinic()
    with pytest.raises(NutricionistaRequired):
        await auth_service.assign_role(clinic.staff.id, Role.PACIENTE)


@pytest.mark.asyncio
async def test_promote_to_super_admin_drops_tenant(auth_service, seed):
    clinic = await seed.clinic()
    await auth_service.assign_role(clinic.staff.id, Role.SUPER_ADMIN)
    await auth_service.db.commit()
    stored = await seed.reload(User, clinic.staff.id)
    assert stored.role == "super_admin"
    assert stored.tenant_id is None


@pytest.mark.asyncio
async def test_patient_promoted_to_staff_loses_nutricionista(auth_service, seed):
    clinic = await seed.clinic()
    await auth_service.assign_role(clinic.patient.id, Role.NUTRICIONISTA_FUNCIONARIO)
    await auth_service.db.commit()
    stored = await seed.reload(User, clinic.patient.id)
    assert stored.role == "nutricionista_funcionario"
    assert stored.nutricionista_id is None
    assert stored.tenant_id == clinic.tenant.id
