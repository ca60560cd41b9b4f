"""
Read-only access to the permission registry.
"""
from collections.abc import Iterable
from typing import List, Optional
from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.features.permissions.exceptions import NotFoundError, UnknownPermissionError
from app.features.permissions.models import Permission, PermissionCategory


class PermissionRegistry:
    """Catalog of permission keys grouped into categories."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_categories(self) -> List[PermissionCategory]:
        stmt = (
            select(PermissionCategory)
            .options(selectinload(PermissionCategory.permissions))
            .order_by(PermissionCategory.display_order, PermissionCategory.key)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_category(self, category_key: str) -> PermissionCategory:
        category = await self.db.get(PermissionCategory, category_key)
        if category is None:
            raise NotFoundError(f"Permission category '{category_key}' not found")
        return category

    async def category_keys(self, category_key: str) -> frozenset[str]:
        """Keys owned by one category."""
        await self.get_category(category_key)
        result = await self.db.execute(
            select(Permission.key).where(Permission.category_key == category_key)
        )
        return frozenset(result.scalars().all())

    async def list_permissions(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None
    ) -> List[Permission]:
        """
        Flat permission list, optionally filtered.

        Args:
            search: Case-insensitive substring matched against key, name and description
            category: Restrict to one category key
        """
        stmt = (
            select(Permission)
            .join(PermissionCategory)
            .order_by(PermissionCategory.display_order, Permission.display_order)
        )
        if category:
            stmt = stmt.where(Permission.category_key == category)
        if search:
            term = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Permission.key).like(term),
                    func.lower(Permission.name).like(term),
                    func.lower(func.coalesce(Permission.description, "")).like(term),
                )
            )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_permissions(self, keys: Iterable[str]) -> dict[str, Permission]:
        keys = set(keys)
        if not keys:
            return {}
        result = await self.db.execute(select(Permission).where(Permission.key.in_(keys)))
        return {p.key: p for p in result.scalars().all()}

    async def is_valid_key(self, key: str) -> bool:
        return await self.db.get(Permission, key) is not None

    async def require_valid_keys(self, keys: Iterable[str]) -> dict[str, Permission]:
        """
        Look up every key, raising UnknownPermissionError if any is missing.

        Returns:
            Mapping of key to Permission for all requested keys
        """
        keys = set(keys)
        found = await self.get_permissions(keys)
        missing = keys - found.keys()
        if missing:
            raise UnknownPermissionError(missing)
        return found
