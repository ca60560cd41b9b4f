"""
FastAPI dependencies for the permission engine.

Implements:
- Providers for the process-wide cache, locks and clock held on app.state
- Request-scoped service factories sharing the request's session
- Route protection by permission key
"""
from collections.abc import Callable
from datetime import datetime
from typing import Literal
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.locks import KeyedLock
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions.analytics import AnalyticsAggregator
from app.features.permissions.audit import AuditLogger
from app.features.permissions.cache import PermissionCache
from app.features.permissions.exceptions import AuthorizationError
from app.features.permissions.grants import GrantRevokeManager
from app.features.permissions.hierarchy import authorize
from app.features.permissions.registry import PermissionRegistry
from app.features.permissions.resolver import EffectivePermissionResolver
from app.features.permissions.roles import RoleCatalog
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Shared State
# ============================================================================

def get_permission_cache(request: Request) -> PermissionCache:
    return request.app.state.permission_cache


def get_role_locks(request: Request) -> KeyedLock:
    return request.app.state.role_locks


def get_user_locks(request: Request) -> KeyedLock:
    return request.app.state.user_locks


def get_clock(request: Request) -> Callable[[], datetime]:
    return request.app.state.clock


# ============================================================================
# Services
# ============================================================================

def get_registry(db: AsyncSession = Depends(get_db)) -> PermissionRegistry:
    return PermissionRegistry(db)


def get_resolver(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> EffectivePermissionResolver:
    return EffectivePermissionResolver(db, cache, clock)


def get_role_catalog(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    locks: KeyedLock = Depends(get_role_locks),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RoleCatalog:
    return RoleCatalog(db, cache, locks, clock)


def get_grant_manager(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    locks: KeyedLock = Depends(get_user_locks),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> GrantRevokeManager:
    return GrantRevokeManager(db, cache, locks, clock)


def get_audit_logger(
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuditLogger:
    return AuditLogger(db, clock)


def get_analytics(db: AsyncSession = Depends(get_db)) -> AnalyticsAggregator:
    return AnalyticsAggregator(db)


# ============================================================================
# Route Protection
# ============================================================================

def require_permission(*keys: str, mode: Literal["all", "any"] = "all"):
    """
    FastAPI dependency to require permission keys.

    Usage:
        @router.get("/audit")
        async def list_audit(
            user: User = Depends(require_permission("permission-control.audit"))
        ):
            pass

    Args:
        keys: Permission keys the caller must hold
        mode: "all" to require every key, "any" for at least one

    Returns:
        Dependency function that returns the current user if they pass

    Raises:
        AuthorizationError: the caller's effective permissions fall short
    """
    async def permission_dependency(
        current_user: User = Depends(get_current_user),
        resolver: EffectivePermissionResolver = Depends(get_resolver),
    ) -> User:
        effective = await resolver.resolve(current_user.id)
        if not authorize(effective, keys, mode=mode):
            log.warning("User %s denied: requires %s of %s", current_user.id, mode, list(keys))
            raise AuthorizationError(f"Permission denied: requires {mode} of {', '.join(keys)}")
        log.debug("User %s granted %s", current_user.id, list(keys))
        return current_user

    return permission_dependency
