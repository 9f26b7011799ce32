"""Health check endpoint.

Learn: Reports whether the server is up and whether its dependencies
(database, Redis) answer. A dependency failure degrades the status but
still returns 200, so load balancers keep routing while Redis is down.
"""

from fastapi import APIRouter, Depends, Request
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic import __version__
from nutriclinic.db.engine import get_db
from nutriclinic.redis_client import ping

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except (SQLAlchemyError, OSError) as e:
        checks["database"] = f"error: {e}"

    try:
        await ping(request.app.state.settings.redis_url)
        checks["redis"] = "ok"
    except (RedisError, OSError) as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
