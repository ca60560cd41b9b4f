"""
Role distribution statistics over the user store.

Read-only and eventually consistent; never part of a mutation.
"""
from typing import Any, Dict, List
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import Role
from app.features.users.models import User


class AnalyticsAggregator:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def role_distribution(self) -> List[Dict[str, Any]]:
        """Users per role, split by active flag. Roles without users report zeroes."""
        active = func.coalesce(func.sum(case((User.is_active.is_(True), 1), else_=0)), 0)
        stmt = (
            select(
                Role.key,
                Role.name,
                func.count(User.id).label("total"),
                active.label("active"),
            )
            .outerjoin(User, User.role_key == Role.key)
            .group_by(Role.key, Role.name, Role.hierarchy_level)
            .order_by(Role.hierarchy_level.desc())
        )
        result = await self.db.execute(stmt)
        return [
            {
                "role": key,
                "role_name": name,
                "total_users": total,
                "active_users": int(active_count),
                "inactive_users": total - int(active_count),
            }
            for key, name, total, active_count in result.all()
        ]
