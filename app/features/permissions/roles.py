"""
Role templates: hierarchy, default permissions and protected roles.
"""
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.locks import KeyedLock
from app.features.permissions.audit import AuditLogger, compare_permissions
from app.features.permissions.cache import PermissionCache
from app.features.permissions.exceptions import (
    AuthorizationError,
    NotFoundError,
    ProtectedRoleError,
    ValidationError,
)
from app.features.permissions.models import Role, AuditActionType, AuditTargetType
from app.features.permissions.registry import PermissionRegistry
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)


class RoleCatalog:
    """
    Reads roles and applies audited changes to their default permissions.

    Changes to one role are serialized through ``locks`` because a category
    edit is a read-modify-write over the role's whole permission set.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: PermissionCache,
        locks: KeyedLock,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.cache = cache
        self.locks = locks
        self.registry = PermissionRegistry(db)
        self.audit = AuditLogger(db, clock)

    async def get_role(self, key: str) -> Role:
        role = await self.db.get(Role, key)
        if role is None:
            raise NotFoundError(f"Role '{key}' not found")
        return role

    async def list_roles(self) -> List[Role]:
        result = await self.db.execute(select(Role).order_by(Role.hierarchy_level.desc()))
        return list(result.scalars().all())

    async def user_counts(self) -> Dict[str, int]:
        stmt = select(User.role_key, func.count(User.id)).group_by(User.role_key)
        result = await self.db.execute(stmt)
        return {role_key: count for role_key, count in result.all()}

    @staticmethod
    def can_modify(actor: User, role: Role) -> bool:
        return not role.is_protected and actor.role.level.is_strictly_above(role.level)

    async def update_default_permissions(
        self,
        role_key: str,
        permissions: Iterable[str],
        actor: User,
        reason: Optional[str] = None,
    ) -> Role:
        """
        Replace a role's default permission set.

        Raises:
            NotFoundError: role does not exist
            ProtectedRoleError: role is protected
            AuthorizationError: actor is not strictly above the role
            UnknownPermissionError: a key is not in the registry
        """
        async with self.locks.hold(role_key):
            role = await self._load_for_update(role_key, actor)
            return await self._apply(role, frozenset(permissions), actor, reason)

    async def update_category_permissions(
        self,
        role_key: str,
        category_key: str,
        permissions_in_category: Iterable[str],
        actor: User,
        reason: Optional[str] = None,
    ) -> Role:
        """
        Replace the part of a role's defaults that falls in one category.

        Keys owned by other categories are carried over unchanged.
        """
        requested = frozenset(permissions_in_category)
        async with self.locks.hold(role_key):
            role = await self._load_for_update(role_key, actor)
            category_keys = await self.registry.category_keys(category_key)
            await self.registry.require_valid_keys(requested)
            outside = requested - category_keys
            if outside:
                raise ValidationError(
                    f"Permission(s) not in category '{category_key}': {', '.join(sorted(outside))}"
                )
            new_full = (role.permission_keys - category_keys) | requested
            return await self._apply(role, new_full, actor, reason)

    async def _load_for_update(self, role_key: str, actor: User) -> Role:
        # Re-read inside the lock so we see the last committed permission set
        stmt = select(Role).where(Role.key == role_key).execution_options(populate_existing=True)
        role = (await self.db.execute(stmt)).scalars().first()
        if role is None:
            raise NotFoundError(f"Role '{role_key}' not found")
        if role.is_protected:
            log.warning("User %s attempted to modify protected role %s", actor.id, role_key)
            raise ProtectedRoleError(role_key)
        if not actor.role.level.is_strictly_above(role.level):
            raise AuthorizationError(
                f"Role '{actor.role_key}' ({actor.role.level}) cannot modify role "
                f"'{role_key}' ({role.level})"
            )
        return role

    async def _apply(self, role: Role, new: frozenset[str], actor: User, reason: Optional[str]) -> Role:
        found = await self.registry.require_valid_keys(new)
        old = role.permission_keys
        if new == old:
            log.debug("Role %s update by %s is a no-op", role.key, actor.id)
            return role

        changes = compare_permissions(old, new)
        role.permissions = [found[key] for key in sorted(new)]
        await self.audit.record(
            AuditActionType.ROLE_UPDATE,
            AuditTargetType.ROLE,
            role.key,
            actor.id,
            old_value={"permissions": sorted(old)},
            new_value={"permissions": sorted(new)},
            reason=reason,
        )
        self.cache.invalidate_role(role.key)
        log.info(
            "Role %s updated by %s: added=%s removed=%s",
            role.key, actor.id, changes["added"], changes["removed"]
        )
        return role
