"""Access log API routes.

Learn: Everyone can read their own trail. Tenant admins read their
tenant's; super admins (no tenant) read everything.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic.auth.dependencies import CurrentUser
from nutriclinic.auth.guard import authorize
from nutriclinic.db.engine import get_db
from nutriclinic.schemas.log import AccessLogRead, AccessStats
from nutriclinic.services.log_service import LogService
from nutriclinic.services.management import ManagementService

router = APIRouter(prefix="/logs")


def _svc(db: AsyncSession = Depends(get_db)) -> LogService:
    return LogService(db)


def _scope(identity: CurrentUser) -> Optional[str]:
    """None (everything) for super admins, else the caller's tenant."""
    if identity.is_super_admin:
        return None
    return str(ManagementService.require_tenant(identity))


@router.get("/my-access", response_model=list[AccessLogRead])
async def my_access(
    limit: int = Query(100, ge=1, le=1000),
    identity: CurrentUser = Depends(authorize("logs.my_access")),
    svc: LogService = Depends(_svc),
):
    return await svc.find_by_user(identity.id, limit)


@router.get("/tenant", response_model=list[AccessLogRead])
async def tenant_access(
    limit: int = Query(100, ge=1, le=1000),
    identity: CurrentUser = Depends(authorize("logs.tenant")),
    svc: LogService = Depends(_svc),
):
    tenant_id = ManagementService.require_tenant(identity)
    return await svc.find_by_tenant(str(tenant_id), limit)


@router.get("/failed-logins", response_model=list[AccessLogRead])
async def failed_logins(
    limit: int = Query(50, ge=1, le=500),
    identity: CurrentUser = Depends(authorize("logs.failed_logins")),
    svc: LogService = Depends(_svc),
):
    return await svc.find_failed_logins(_scope(identity), limit)


@router.get("/stats", response_model=AccessStats)
async def access_stats(
    identity: CurrentUser = Depends(authorize("logs.stats")),
    svc: LogService = Depends(_svc),
):
    return await svc.get_access_stats(_scope(identity))
