"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.

Learn: Unlike a blanket router-level auth dependency, each route names
its own operation in authorize(...), so the required roles and
permissions for every endpoint sit together in auth.guard's
ROUTE_REQUIREMENTS table. Health, login, register and refresh are open.
"""

from fastapi import APIRouter

from nutriclinic.api.admin import router as admin_router
from nutriclinic.api.auth import router as auth_router
from nutriclinic.api.health import router as health_router
from nutriclinic.api.logs import router as logs_router
from nutriclinic.api.tenant_admin import router as tenant_admin_router
from nutriclinic.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(users_router, tags=["users"])
api_router.include_router(admin_router, tags=["admin"])
api_router.include_router(tenant_admin_router, tags=["tenant-admin"])
api_router.include_router(logs_router, tags=["logs"])
