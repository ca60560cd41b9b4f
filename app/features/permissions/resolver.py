"""
Effective permission resolution.

effective(user) = role defaults ∪ keys of the user's active custom grants
"""
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.cache import CachedPermissions, PermissionCache
from app.features.permissions.exceptions import NotFoundError
from app.features.permissions.hierarchy import authorize
from app.features.permissions.models import CustomPermissionGrant, Role
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)


@dataclass
class UserPermissionView:
    user: User
    role_permissions: frozenset[str]
    custom_grants: List[CustomPermissionGrant]
    effective_permissions: frozenset[str]


class EffectivePermissionResolver:
    """
    Request-scoped resolver backed by the shared PermissionCache.

    The cache holds grant expiry instants, not a filtered set, so every call
    re-checks expiry against the clock.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: PermissionCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.cache = cache
        self.clock = clock

    async def resolve(self, user_id: str) -> frozenset[str]:
        entry = self.cache.get(user_id)
        if entry is None:
            entry = await self._load(user_id)
        return entry.effective(self.clock())

    async def has_permission(self, user_id: str, key: str) -> bool:
        return key in await self.resolve(user_id)

    async def has_any(self, user_id: str, keys: Iterable[str]) -> bool:
        return authorize(await self.resolve(user_id), keys, mode="any")

    async def has_all(self, user_id: str, keys: Iterable[str]) -> bool:
        return authorize(await self.resolve(user_id), keys, mode="all")

    async def describe(self, user_id: str, include_revoked: bool = False) -> UserPermissionView:
        """User, role defaults, raw grant listing and effective set."""
        user = await self._get_user(user_id)
        stmt = select(CustomPermissionGrant).where(CustomPermissionGrant.user_id == user_id)
        if not include_revoked:
            stmt = stmt.where(CustomPermissionGrant.revoked.is_(False))
        stmt = stmt.order_by(CustomPermissionGrant.granted_at.desc(), CustomPermissionGrant.id.desc())
        grants = list((await self.db.execute(stmt)).scalars().all())
        return UserPermissionView(
            user=user,
            role_permissions=user.role.permission_keys,
            custom_grants=grants,
            effective_permissions=await self.resolve(user_id),
        )

    async def _get_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def _load(self, user_id: str) -> CachedPermissions:
        user = await self._get_user(user_id)
        stamp = self.cache.stamp(user_id, user.role_key)

        # Fresh reads: the session may hold objects loaded before a commit
        role_stmt = select(Role).where(Role.key == user.role_key).execution_options(populate_existing=True)
        role = (await self.db.execute(role_stmt)).scalars().one()
        grant_stmt = select(CustomPermissionGrant.permission_key, CustomPermissionGrant.expires_at).where(
            CustomPermissionGrant.user_id == user_id,
            CustomPermissionGrant.revoked.is_(False),
        )
        grants = (await self.db.execute(grant_stmt)).all()

        log.debug("Resolved permission inputs for user %s (role %s, %d grants)",
                  user_id, role.key, len(grants))
        return self.cache.put(
            user_id,
            role.key,
            role.permission_keys,
            [(key, expires_at) for key, expires_at in grants],
            stamp=stamp,
        )
