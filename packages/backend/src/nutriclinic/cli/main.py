"""NutriClinic CLI — bootstrap and operations helpers.

Usage:
    nutriclinic create-super-admin                  # Seed the first super admin
    nutriclinic create-super-admin --email a@b.com  # ...with explicit values
    nutriclinic check                               # Ask a running server for /health
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from nutriclinic import __version__
from nutriclinic.auth.jwt import TokenSigner
from nutriclinic.auth.password import PasswordHasher
from nutriclinic.auth.roles import Role
from nutriclinic.auth.service import AuthService
from nutriclinic.config import settings
from nutriclinic.db.engine import build_engine, build_session_factory
from nutriclinic.schemas.auth import RegisterRequest

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("NUTRICLINIC_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


def _run(coro):
    """Run a coroutine from a sync click handler, even inside a running loop."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


@click.group()
@click.version_option(version=__version__, prog_name="nutriclinic")
def main():
    """NutriClinic — multi-tenant nutrition clinic backend."""


# ---------------------------------------------------------------------------
# nutriclinic create-super-admin
# ---------------------------------------------------------------------------


async def create_super_admin(
    session_factory, email: str, password: str, name: str
) -> Optional[str]:
    """Create the super admin unless the email is taken. Returns the new id."""
    async with session_factory() as db:
        auth = AuthService(
            db,
            TokenSigner(
                settings.jwt_secret,
                settings.jwt_algorithm,
                settings.access_token_expire_minutes,
            ),
            PasswordHasher(rounds=settings.bcrypt_rounds),
        )
        if await auth.users.email_exists(email):
            return None
        user = await auth.create_account(
            RegisterRequest(
                email=email, password=password, name=name, role=Role.SUPER_ADMIN
            )
        )
        await db.commit()
        return str(user.id)


async def _create_super_admin_once(email: str, password: str, name: str) -> Optional[str]:
    engine = build_engine(settings)
    try:
        return await create_super_admin(
            build_session_factory(engine), email, password, name
        )
    finally:
        await engine.dispose()


@main.command("create-super-admin")
@click.option("--email", default=None, help="Defaults to NUTRICLINIC_SUPER_ADMIN_EMAIL")
@click.option("--password", default=None, help="Defaults to NUTRICLINIC_SUPER_ADMIN_PASSWORD")
@click.option("--name", default="Super Administrador", show_default=True)
def create_super_admin_cmd(email: Optional[str], password: Optional[str], name: str):
    """Seed a super admin account. No-op when the email already exists."""
    email = email or settings.super_admin_email
    password = password or settings.super_admin_password

    user_id = _run(_create_super_admin_once(email, password, name))
    if user_id is None:
        click.secho(f"Super admin {email} already exists, nothing to do.", fg="yellow")
        return
    click.secho(f"Super admin created: {email} ({user_id})", fg="green")
    click.secho("Change the password after the first login.", fg="yellow")


# ---------------------------------------------------------------------------
# nutriclinic check
# ---------------------------------------------------------------------------


async def _check_impl() -> dict:
    async with _client() as c:
        r = await c.get("/api/v1/health")
        r.raise_for_status()
        return r.json()


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw response")
def check(as_json: bool):
    """Call /health on a running server and print dependency status."""
    try:
        data = _run(_check_impl())
    except httpx.HTTPError as e:
        click.secho(f"Server unreachable at {_api_url()}: {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    status = data.get("status", "unknown")
    click.secho(f"{status} (v{data.get('version', '?')})", bold=True,
                fg="green" if status == "healthy" else "yellow")
    for key in ("server", "database", "redis"):
        value = data.get(key, "—")
        click.echo(f"  {key:<9} {click.style(value, fg='green' if value == 'ok' else 'red')}")
    if status != "healthy":
        sys.exit(2)


if __name__ == "__main__":
    main()
