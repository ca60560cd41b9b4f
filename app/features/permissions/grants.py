"""
Custom per-user permission grants.

Grants are purely additive: revoking one only ends that grant and never
removes a permission the user's role supplies by default.
"""
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.core.locks import KeyedLock
from app.features.permissions.audit import AuditLogger
from app.features.permissions.cache import PermissionCache
from app.features.permissions.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PermissionControlError,
    ValidationError,
)
from app.features.permissions.models import CustomPermissionGrant, AuditActionType, AuditTargetType
from app.features.permissions.registry import PermissionRegistry
from app.features.users.models import User
from app.utils import get_logger, utcnow, as_utc


log = get_logger(__name__)


@dataclass
class BulkItemResult:
    permission_key: str
    success: bool
    error: Optional[Dict[str, Any]] = None
    grant: Optional[CustomPermissionGrant] = field(default=None, repr=False)


class GrantRevokeManager:
    """
    Creates, revokes and resets custom grants.

    Every mutation is one transaction: validate, write, append audit,
    commit, then invalidate the user's cached permissions. Mutations for
    the same user are serialized through ``locks``.
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
        self.clock = clock
        self.registry = PermissionRegistry(db)
        self.audit = AuditLogger(db, clock)

    async def list_grants(self, user_id: str, include_revoked: bool = False) -> List[CustomPermissionGrant]:
        """Raw grant listing for a user, newest first. Expired grants are included."""
        stmt = select(CustomPermissionGrant).where(CustomPermissionGrant.user_id == user_id)
        if not include_revoked:
            stmt = stmt.where(CustomPermissionGrant.revoked.is_(False))
        stmt = stmt.order_by(CustomPermissionGrant.granted_at.desc(), CustomPermissionGrant.id.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def active_grants(self, user_id: str, now: Optional[datetime] = None) -> List[CustomPermissionGrant]:
        now = now or self.clock()
        return [g for g in await self.list_grants(user_id) if g.is_active(now)]

    async def grant(
        self,
        user_id: str,
        permission_key: str,
        actor: User,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> CustomPermissionGrant:
        """
        Give a user one permission beyond their role defaults.

        Raises:
            UnknownPermissionError: key not in the registry
            ValidationError: expiry not after the grant time, or empty reason
            NotFoundError: user does not exist
            AuthorizationError: actor is not strictly above the user's role
            ConflictError: an active grant for this key already exists
        """
        await self.registry.require_valid_keys([permission_key])
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to grant a permission")

        async with self.locks.hold(user_id):
            granted_at = self.clock()
            expires_at = as_utc(expires_at)
            if expires_at is not None and expires_at <= granted_at:
                raise ValidationError("expiresAt must be after the time of granting")

            await self._load_manageable_user(user_id, actor)
            for existing in await self.active_grants(user_id, granted_at):
                if existing.permission_key == permission_key:
                    raise ConflictError(
                        f"User {user_id} already has an active grant for '{permission_key}'"
                    )

            grant = CustomPermissionGrant(
                id=generate_ulid(),
                user_id=user_id,
                permission_key=permission_key,
                granted_by=actor.id,
                reason=reason,
                granted_at=granted_at,
                expires_at=expires_at,
            )
            self.db.add(grant)
            await self.audit.record(
                AuditActionType.GRANT,
                AuditTargetType.USER,
                user_id,
                actor.id,
                old_value=None,
                new_value={
                    "grantId": grant.id,
                    "permissionKey": permission_key,
                    "expiresAt": expires_at.isoformat() if expires_at else None,
                },
                reason=reason,
            )
            self.cache.invalidate(user_id)
            return grant

    async def revoke(
        self,
        user_id: str,
        permission_key: str,
        actor: User,
        reason: str,
    ) -> CustomPermissionGrant:
        """
        End the user's active grant for a key.

        Raises:
            NotFoundError: user missing, or no active custom grant for the key
                (role default permissions cannot be revoked per user)
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to revoke a permission")

        async with self.locks.hold(user_id):
            await self._load_manageable_user(user_id, actor)
            now = self.clock()
            grant = next(
                (g for g in await self.active_grants(user_id, now) if g.permission_key == permission_key),
                None
            )
            if grant is None:
                raise NotFoundError(f"No active custom grant of '{permission_key}' for user {user_id}")

            grant.revoked = True
            grant.revoked_by = actor.id
            grant.revoked_at = now
            grant.revoke_reason = reason
            await self.audit.record(
                AuditActionType.REVOKE,
                AuditTargetType.USER,
                user_id,
                actor.id,
                old_value={
                    "grantId": grant.id,
                    "permissionKey": permission_key,
                    "expiresAt": grant.expires_at.isoformat() if grant.expires_at else None,
                },
                new_value=None,
                reason=reason,
            )
            self.cache.invalidate(user_id)
            return grant

    async def reset_custom(self, user_id: str, actor: User, reason: Optional[str] = None) -> int:
        """
        Revoke all of a user's active grants in one transaction.

        Returns:
            Number of grants revoked. Zero means nothing was written.
        """
        async with self.locks.hold(user_id):
            await self._load_manageable_user(user_id, actor)
            now = self.clock()
            active = await self.active_grants(user_id, now)
            if not active:
                return 0

            for grant in active:
                grant.revoked = True
                grant.revoked_by = actor.id
                grant.revoked_at = now
                grant.revoke_reason = reason or "Reset to role defaults"
            removed = sorted(g.permission_key for g in active)
            await self.audit.record(
                AuditActionType.RESET,
                AuditTargetType.USER,
                user_id,
                actor.id,
                old_value={"permissions": removed},
                new_value={"permissions": []},
                reason=reason,
            )
            self.cache.invalidate(user_id)
            return len(active)

    async def bulk_grant(self, user_id: str, items: List[Dict[str, Any]], actor: User) -> List[BulkItemResult]:
        """
        Grant several permissions, each in its own transaction.

        Items are dicts with permission_key, reason and optional expires_at.
        A failing item is reported and does not stop the rest.
        """
        results = []
        for item in items:
            try:
                grant = await self.grant(
                    user_id, item["permission_key"], actor, item.get("reason", ""), item.get("expires_at")
                )
                results.append(BulkItemResult(item["permission_key"], True, grant=grant))
            except PermissionControlError as exc:
                results.append(BulkItemResult(item["permission_key"], False, error=exc.to_dict()))
        return results

    async def bulk_revoke(self, user_id: str, items: List[Dict[str, Any]], actor: User) -> List[BulkItemResult]:
        results = []
        for item in items:
            try:
                grant = await self.revoke(user_id, item["permission_key"], actor, item.get("reason", ""))
                results.append(BulkItemResult(item["permission_key"], True, grant=grant))
            except PermissionControlError as exc:
                results.append(BulkItemResult(item["permission_key"], False, error=exc.to_dict()))
        return results

    async def _load_manageable_user(self, user_id: str, actor: User) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if not actor.role.level.is_strictly_above(user.role.level):
            raise AuthorizationError(
                f"Role '{actor.role_key}' cannot manage permissions of a '{user.role_key}' user"
            )
        return user
