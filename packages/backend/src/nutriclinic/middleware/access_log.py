"""Access log middleware — one audit row per API request.

Learn: The caller is taken from the bearer token (decoded again here,
because middleware runs outside the route's dependencies); no token or a
bad one is recorded as "anonymous". Rows are written through their own
session from app.state.session_factory, after the response is built, so
the handler's transaction can't roll the audit row back.

A failed write is logged and dropped. Auditing never fails a request.

Routes can leave notes on request.state for the row:
- audit_email / audit_tenant_subdomain: who tried to log in
- error_message: set by the AuthError handler in main.py
"""

import time
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from nutriclinic.auth.jwt import ACCESS, TokenError
from nutriclinic.services.log_service import LOGIN_ACTION, LogService
from nutriclinic.services.tenant_service import TenantService

logger = structlog.get_logger()

ANONYMOUS = "anonymous"
SKIP_PATHS = ("/api/v1/health",)
SENSITIVE_KEYS = ("password", "token", "secret")

METHOD_ACTIONS = {
    "GET": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}

PATH_ACTIONS = {
    "/api/v1/auth/login": LOGIN_ACTION,
    "/api/v1/auth/logout": "logout",
    "/api/v1/auth/refresh": "refresh",
    "/api/v1/auth/register": "register",
}


def action_for(method: str, path: str) -> str:
    return PATH_ACTIONS.get(path.rstrip("/")) or METHOD_ACTIONS.get(method, "unknown")


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return (
        request.headers.get("x-real-ip")
        or (request.client.host if request.client else None)
        or "unknown"
    )


def sanitized_query(request: Request) -> dict:
    return {
        key: "[REDACTED]" if any(s in key.lower() for s in SENSITIVE_KEYS) else value
        for key, value in request.query_params.items()
    }


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Record every /api/v1 request in the access_logs table."""

    def __init__(self, app, enabled: bool = True, prefix: str = "/api/v1"):
        super().__init__(app)
        self.enabled = enabled
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if (
            not self.enabled
            or request.method == "OPTIONS"
            or not path.startswith(self.prefix)
            or path.startswith(SKIP_PATHS)
        ):
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            await self._record(request, 500, started)
            raise
        await self._record(request, response.status_code, started)
        return response

    def _caller(self, request: Request) -> Optional[dict]:
        auth = request.headers.get("authorization", "")
        if not auth.startswith("Bearer "):
            return None
        try:
            return request.app.state.token_signer.verify(
                auth[7:].strip(), expected_type=ACCESS
            )
        except TokenError:
            return None

    async def _record(self, request: Request, status_code: int, started: float) -> None:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        claims = self._caller(request) or {}
        state = request.state
        method = request.method
        path = request.url.path
        action = action_for(method, path)

        row = {
            "user_id": claims.get("sub", ANONYMOUS),
            "user_email": claims.get("email")
            or getattr(state, "audit_email", None)
            or ANONYMOUS,
            "user_role": claims.get("role", ANONYMOUS),
            "tenant_id": claims.get("tenantId"),
            "action": action,
            "resource": path,
            "method": method,
            "ip_address": client_ip(request),
            "user_agent": request.headers.get("user-agent", "Unknown")[:500],
            "success": status_code < 400,
            "status_code": status_code,
            "error_message": getattr(state, "error_message", None),
            "meta": {
                "response_time_ms": elapsed_ms,
                "query_params": sanitized_query(request),
            },
        }

        try:
            async with request.app.state.session_factory() as session:
                subdomain = getattr(state, "audit_tenant_subdomain", None)
                if row["tenant_id"] is None and action == LOGIN_ACTION and subdomain:
                    tenant = await TenantService(session).find_by_subdomain(subdomain)
                    if tenant:
                        row["tenant_id"] = str(tenant.id)
                        row["meta"]["tenant_subdomain"] = subdomain
                await LogService(session).record(**row)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("access_log.write_failed", path=path, error=str(e))
