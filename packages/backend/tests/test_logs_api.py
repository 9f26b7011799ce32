"""Access log tests — what the middleware records and who can read it.

Learn: The middleware writes its row before the response leaves the app,
so by the time the client has a response, the row is committed and the
next request can read it back.
"""

import pytest
from sqlalchemy import select

from nutriclinic.db.models import AccessLog


async def _rows(session_factory, **filters) -> list[AccessLog]:
    async with session_factory() as db:
        q = select(AccessLog).order_by(AccessLog.id)
        for key, value in filters.items():
            q = q.where(getattr(AccessLog, key) == value)
        return list((await db.execute(q)).scalars().all())


# ═══════════════════════════════════════════════════════════
# Recording
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_authenticated_request_recorded(client, seed, session_factory):
    clinic = await seed.clinic()
    r = await client.get(
        "/api/v1/users/profile",
        params={"page": "2", "access_token": "abc"},
        headers={**seed.headers(clinic.staff), "User-Agent": "pytest-agent"},
    )
    assert r.status_code == 200

    [row] = await _rows(session_factory, resource="/api/v1/users/profile")
    assert row.user_id == str(clinic.staff.id)
    assert row.user_email == clinic.staff.email
    assert row.user_role == "nutricionista_funcionario"
    assert row.tenant_id == str(clinic.tenant.id)
    assert row.action == "read"
    assert row.method == "GET"
    assert row.success is True
    assert row.status_code == 200
    assert row.user_agent == "pytest-agent"
    assert row.meta["query_params"] == {"page": "2", "access_token": "[REDACTED]"}
    assert row.meta["response_time_ms"] >= 0


@pytest.mark.asyncio
async def test_anonymous_request_recorded(client, session_factory):
    r = await client.get("/api/v1/users")
    assert r.status_code == 401

    [row] = await _rows(session_factory, resource="/api/v1/users")
    assert row.user_id == "anonymous"
    assert row.user_email == "anonymous"
    assert row.tenant_id is None
    assert row.success is False
    assert row.error_message == "Authentication required"


@pytest.mark.asyncio
async def test_failed_login_attributed_to_tenant(client, seed, login, session_factory):
    clinic = await seed.clinic()
    r = await login(clinic.staff, clinic.tenant, password="wrong_password")
    assert r.status_code == 401

    [row] = await _rows(session_factory, action="login")
    assert row.success is False
    assert row.user_id == "anonymous"
    assert row.user_email == clinic.staff.email
    assert row.tenant_id == str(clinic.tenant.id)
    assert row.error_message == "Invalid credentials"
    assert row.meta["tenant_subdomain"] == clinic.tenant.subdomain


@pytest.mark.asyncio
async def test_auth_actions_named(client, seed, login, session_factory):
    root = await seed.super_admin()
    tokens = (await login(root)).json()
    await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    await client.post(
        "/api/v1/auth/logout",
        headers={"Authorization": f"Bearer {tokens['access_token']}"},
    )
    actions = [row.action for row in await _rows(session_factory)]
    assert actions == ["login", "refresh", "logout"]


@pytest.mark.asyncio
async def test_health_not_recorded(client, session_factory):
    await client.get("/api/v1/health")
    assert await _rows(session_factory) == []


# ═══════════════════════════════════════════════════════════
# Reading
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_my_access_newest_first(client, seed):
    clinic = await seed.clinic()
    headers = seed.headers(clinic.patient)
    await client.get("/api/v1/users/profile", headers=headers)
    await client.get("/api/v1/auth/profile", headers=headers)

    r = await client.get("/api/v1/logs/my-access", headers=headers)
    assert r.status_code == 200
    assert [e["resource"] for e in r.json()] == [
        "/api/v1/auth/profile",
        "/api/v1/users/profile",
    ]
    assert r.json()[0]["metadata"]["query_params"] == {}

    r = await client.get("/api/v1/logs/my-access", params={"limit": 1}, headers=headers)
    assert len(r.json()) == 1


@pytest.mark.asyncio
async def test_tenant_logs_admin_only_and_scoped(client, seed):
    ours = await seed.clinic()
    theirs = await seed.clinic()
    await client.get("/api/v1/users/profile", headers=seed.headers(ours.staff))
    await client.get("/api/v1/users/profile", headers=seed.headers(theirs.staff))

    r = await client.get("/api/v1/logs/tenant", headers=seed.headers(ours.admin))
    assert r.status_code == 200
    assert {e["tenant_id"] for e in r.json()} == {str(ours.tenant.id)}

    r = await client.get("/api/v1/logs/tenant", headers=seed.headers(ours.patient))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_failed_logins_scoped(client, seed, login):
    ours = await seed.clinic()
    theirs = await seed.clinic()
    root = await seed.super_admin()
    await login(ours.staff, ours.tenant, password="wrong_password")
    await login(theirs.staff, theirs.tenant, password="wrong_password")
    await login(ours.staff, ours.tenant)  # success, not listed

    r = await client.get("/api/v1/logs/failed-logins", headers=seed.headers(ours.admin))
    assert r.status_code == 200
    assert [e["user_email"] for e in r.json()] == [ours.staff.email]

    r = await client.get("/api/v1/logs/failed-logins", headers=seed.headers(root))
    assert len(r.json()) == 2


@pytest.mark.asyncio
async def test_access_stats(client, seed):
    clinic = await seed.clinic()
    headers = seed.headers(clinic.admin)
    await client.get("/api/v1/tenant-admin/users", headers=headers)  # 200
    await client.get("/api/v1/users", headers=headers)  # 403

    r = await client.get("/api/v1/logs/stats", headers=headers)
    assert r.status_code == 200
    assert r.json() == {
        "total_access": 2,
        "successful_access": 1,
        "failed_access": 1,
        "unique_users": 1,
        "success_rate": 50.0,
    }


@pytest.mark.asyncio
async def test_access_stats_empty(client, seed):
    root = await seed.super_admin()
    r = await client.get("/api/v1/logs/stats", headers=seed.headers(root))
    assert r.json()["total_access"] == 0
    assert r.json()["success_rate"] == 0.0
