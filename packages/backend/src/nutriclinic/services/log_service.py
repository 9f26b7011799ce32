"""Access log service — append and query the request audit trail.

Learn: The middleware writes through record() with its own session, so a
failed handler transaction can't take the audit row down with it.
Queries are newest-first and capped by `limit`.
"""

from typing import Any, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nutriclinic.db.models import AccessLog

LOGIN_ACTION = "login"


class LogService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, **fields: Any) -> AccessLog:
        """Append one row. Flush only; the caller commits."""
        entry = AccessLog(**fields)
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def find_by_user(self, user_id: str, limit: int = 100) -> list[AccessLog]:
        result = await self.db.execute(
            select(AccessLog)
            .where(AccessLog.user_id == str(user_id))
            .order_by(AccessLog.timestamp.desc(), AccessLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_by_tenant(
        self, tenant_id: str, limit: int = 100
    ) -> list[AccessLog]:
        result = await self.db.execute(
            select(AccessLog)
            .where(AccessLog.tenant_id == str(tenant_id))
            .order_by(AccessLog.timestamp.desc(), AccessLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_failed_logins(
        self, tenant_id: Optional[str] = None, limit: int = 50
    ) -> list[AccessLog]:
        q = select(AccessLog).where(
            AccessLog.success.is_(False), AccessLog.action == LOGIN_ACTION
        )
        if tenant_id:
            q = q.where(AccessLog.tenant_id == str(tenant_id))
        result = await self.db.execute(
            q.order_by(AccessLog.timestamp.desc(), AccessLog.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get_access_stats(self, tenant_id: Optional[str] = None) -> dict:
        """Totals, success split, distinct users and success rate (percent)."""
        q = select(
            func.count(AccessLog.id),
            func.coalesce(func.sum(case((AccessLog.success.is_(True), 1), else_=0)), 0),
            func.count(func.distinct(AccessLog.user_id)),
        )
        if tenant_id:
            q = q.where(AccessLog.tenant_id == str(tenant_id))

        total, successful, unique_users = (await self.db.execute(q)).one()
        total = total or 0
        successful = int(successful or 0)

        return {
            "total_access": total,
            "successful_access": successful,
            "failed_access": total - successful,
            "unique_users": unique_users or 0,
            "success_rate": round(successful / total * 100, 2) if total else 0.0,
        }
