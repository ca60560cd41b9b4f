"""
Permission management API routes.

Provides endpoints for the permission registry, role defaults, per-user
custom grants, the audit trail, analytics and cache control.
"""
from datetime import datetime
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions.analytics import AnalyticsAggregator
from app.features.permissions.audit import AuditFilters, AuditLogger, diff
from app.features.permissions.cache import PermissionCache
from app.features.permissions.catalog import (
    PERMISSION_CONTROL_READ,
    PERMISSION_CONTROL_UPDATE,
    PERMISSION_CONTROL_DELETE,
    PERMISSION_CONTROL_AUDIT,
    PERMISSION_CONTROL_ANALYTICS,
)
from app.features.permissions.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.features.permissions.grants import BulkItemResult, GrantRevokeManager
from app.features.permissions.hierarchy import authorize
from app.features.permissions.models import (
    AuditLog,
    AuditActionType,
    AuditTargetType,
    CustomPermissionGrant,
    PermissionCategory,
    Role,
)
from app.features.permissions.registry import PermissionRegistry
from app.features.permissions.resolver import EffectivePermissionResolver
from app.features.permissions.roles import RoleCatalog
from app.features.permissions.schemas import (
    CategoryPermission,
    CategoryResponse,
    PermissionResponse,
    RoleResponse,
    RoleUpdate,
    GrantRequest,
    RevokeRequest,
    GrantResponse,
    RevokeResponse,
    ResetResponse,
    BulkGrantRequest,
    BulkRevokeRequest,
    BulkItemResponse,
    BulkResponse,
    UserSummary,
    UserPermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionChanges,
    AuditLogResponse,
    AuditLogListResponse,
    PaginationInfo,
    CacheClearRequest,
    CacheClearResponse,
    RoleDistributionRow,
    ExportResponse,
)
from app.features.permissions.dependencies import (
    get_analytics,
    get_audit_logger,
    get_clock,
    get_grant_manager,
    get_permission_cache,
    get_registry,
    get_resolver,
    get_role_catalog,
    require_permission,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Response Builders
# ============================================================================

def category_map(categories: List[PermissionCategory]) -> Dict[str, CategoryResponse]:
    return {
        category.key: CategoryResponse(
            category_name=category.name,
            permissions=[
                CategoryPermission(key=p.key, name=p.name, description=p.description)
                for p in category.permissions
            ],
        )
        for category in categories
    }


def role_response(role: Role, actor: User, user_count: int = 0) -> RoleResponse:
    keys = sorted(role.permission_keys)
    return RoleResponse(
        key=role.key,
        name=role.name,
        description=role.description,
        hierarchy=role.hierarchy_level,
        permissions=keys,
        permission_count=len(keys),
        user_count=user_count,
        can_modify=RoleCatalog.can_modify(actor, role),
        is_protected=role.is_protected,
    )


def grant_response(grant: CustomPermissionGrant, now: datetime) -> GrantResponse:
    return GrantResponse(
        id=grant.id,
        user_id=grant.user_id,
        permission_key=grant.permission_key,
        granted_by=grant.granted_by,
        reason=grant.reason,
        granted_at=grant.granted_at,
        expires_at=grant.expires_at,
        revoked=grant.revoked,
        revoked_by=grant.revoked_by,
        revoked_at=grant.revoked_at,
        revoke_reason=grant.revoke_reason,
        active=grant.is_active(now),
    )


def audit_response(entry: AuditLog) -> AuditLogResponse:
    changes = diff(entry)
    return AuditLogResponse(
        id=entry.id,
        action_type=entry.action_type,
        target_type=entry.target_type,
        target_id=entry.target_id,
        performed_by=entry.performed_by,
        performed_at=entry.performed_at,
        old_value=entry.old_value,
        new_value=entry.new_value,
        reason=entry.reason,
        changes=PermissionChanges(**changes) if changes is not None else None,
    )


def bulk_response(results: List[BulkItemResult], now: datetime) -> BulkResponse:
    items = [
        BulkItemResponse(
            permission_key=r.permission_key,
            success=r.success,
            error=r.error,
            grant=grant_response(r.grant, now) if r.grant is not None else None,
        )
        for r in results
    ]
    succeeded = sum(1 for r in results if r.success)
    return BulkResponse(results=items, succeeded=succeeded, failed=len(results) - succeeded)


async def audit_page(audit: AuditLogger, filters: AuditFilters, page: int, limit: int) -> AuditLogListResponse:
    result = await audit.query(filters, page=page, limit=limit)
    return AuditLogListResponse(
        data=[audit_response(entry) for entry in result.data],
        pagination=PaginationInfo(page=result.page, limit=result.limit, total=result.total, pages=result.pages),
    )


# ============================================================================
# Registry Routes
# ============================================================================

@router.get("/categories", response_model=Dict[str, CategoryResponse])
async def list_categories(
    registry: PermissionRegistry = Depends(get_registry),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_READ))
):
    """Every permission category with its permissions."""
    return category_map(await registry.list_categories())


@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    search: Optional[str] = None,
    category: Optional[str] = None,
    registry: PermissionRegistry = Depends(get_registry),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_READ))
):
    """Flat permission list with optional search and category filter."""
    permissions = await registry.list_permissions(search=search, category=category)
    return [
        PermissionResponse(key=p.key, name=p.name, description=p.description, category=p.category_key)
        for p in permissions
    ]


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    catalog: RoleCatalog = Depends(get_role_catalog),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_READ))
):
    """All roles, highest in the hierarchy first."""
    counts = await catalog.user_counts()
    return [role_response(role, current_user, counts.get(role.key, 0)) for role in await catalog.list_roles()]


@router.get("/roles/{role_key}", response_model=RoleResponse)
async def get_role(
    role_key: str,
    catalog: RoleCatalog = Depends(get_role_catalog),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_READ))
):
    role = await catalog.get_role(role_key)
    counts = await catalog.user_counts()
    return role_response(role, current_user, counts.get(role.key, 0))


@router.put("/roles/{role_key}", response_model=RoleResponse)
async def update_role_permissions(
    role_key: str,
    update: RoleUpdate,
    catalog: RoleCatalog = Depends(get_role_catalog),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_UPDATE))
):
    """Replace a role's default permissions."""
    role = await catalog.update_default_permissions(role_key, update.permissions, current_user, update.reason)
    counts = await catalog.user_counts()
    return role_response(role, current_user, counts.get(role.key, 0))


@router.put("/roles/{role_key}/categories/{category_key}", response_model=RoleResponse)
async def update_role_category_permissions(
    role_key: str,
    category_key: str,
    update: RoleUpdate,
    catalog: RoleCatalog = Depends(get_role_catalog),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_UPDATE))
):
    """Replace the role's defaults within one category, leaving other categories alone."""
    role = await catalog.update_category_permissions(
        role_key, category_key, update.permissions, current_user, update.reason
    )
    counts = await catalog.user_counts()
    return role_response(role, current_user, counts.get(role.key, 0))


# ============================================================================
# User Permission Routes
# ============================================================================

@router.get("/users/{user_id}", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    include_revoked: bool = Query(False, alias="includeRevoked"),
    resolver: EffectivePermissionResolver = Depends(get_resolver),
    clock=Depends(get_clock),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_READ))
):
    """Role defaults, custom grants and effective permissions of one user."""
    view = await resolver.describe(user_id, include_revoked=include_revoked)
    now = clock()
    return UserPermissionsResponse(
        user=UserSummary(
            id=view.user.id,
            email=view.user.email,
            name=view.user.name,
            role_key=view.user.role_key,
            is_active=view.user.is_active,
        ),
        role_permissions=sorted(view.role_permissions),
        custom_grants=[grant_response(g, now) for g in view.custom_grants],
        effective_permissions=sorted(view.effective_permissions),
    )


@router.post("/users/{user_id}/grant", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def grant_permission(
    user_id: str,
    payload: GrantRequest,
    manager: GrantRevokeManager = Depends(get_grant_manager),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_UPDATE))
):
    """Give a user a permission beyond their role defaults."""
    grant = await manager.grant(user_id, payload.permission_key, current_user, payload.reason, payload.expires_at)
    return grant_response(grant, manager.clock())


@router.post("/users/{user_id}/revoke", response_model=RevokeResponse)
async def revoke_permission(
    user_id: str,
    payload: RevokeRequest,
    manager: GrantRevokeManager = Depends(get_grant_manager),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_UPDATE))
):
    """End a user's custom grant. Role default permissions cannot be revoked here."""
    grant = await manager.revoke(user_id, payload.permission_key, current_user, payload.reason)
    return RevokeResponse(ok=True, grant=grant_response(grant, manager.clock()))


@router.delete("/users/{user_id}/custom", response_model=ResetResponse)
async def reset_custom_permissions(
    user_id: str,
    reason: Optional[str] = None,
    manager: GrantRevokeManager = Depends(get_grant_manager),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_DELETE))
):
    """Revoke every active custom grant of a user."""
    count = await manager.reset_custom(user_id, current_user, reason)
    return ResetResponse(revoked_count=count)


@router.post("/users/{user_id}/grant/bulk", response_model=BulkResponse)
async def bulk_grant_permissions(
    user_id: str,
    payload: BulkGrantRequest,
    manager: GrantRevokeManager = Depends(get_grant_manager),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_UPDATE))
):
    items = [
        {"permission_key": item.permission_key, "reason": item.reason, "expires_at": item.expires_at}
        for item in payload.items
    ]
    results = await manager.bulk_grant(user_id, items, current_user)
    return bulk_response(results, manager.clock())


@router.post("/users/{user_id}/revoke/bulk", response_model=BulkResponse)
async def bulk_revoke_permissions(
    user_id: str,
    payload: BulkRevokeRequest,
    manager: GrantRevokeManager = Depends(get_grant_manager),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_UPDATE))
):
    items = [{"permission_key": item.permission_key, "reason": item.reason} for item in payload.items]
    results = await manager.bulk_revoke(user_id, items, current_user)
    return bulk_response(results, manager.clock())


@router.get("/users/{user_id}/audit", response_model=AuditLogListResponse)
async def get_user_audit(
    user_id: str,
    page: int = 1,
    limit: int = 50,
    audit: AuditLogger = Depends(get_audit_logger),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_AUDIT))
):
    """Audit entries that target one user."""
    filters = AuditFilters(target_type=AuditTargetType.USER, target_id=user_id)
    return await audit_page(audit, filters, page, limit)


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permissions(
    payload: PermissionCheckRequest,
    resolver: EffectivePermissionResolver = Depends(get_resolver),
    current_user: User = Depends(get_current_user)
):
    """Check the caller (or, with permission-control.read, another user) against permission keys."""
    target_id = payload.user_id or current_user.id
    if target_id != current_user.id and not await resolver.has_permission(current_user.id, PERMISSION_CONTROL_READ):
        log.warning("User %s denied permission check for user %s", current_user.id, target_id)
        raise AuthorizationError("Not authorized to check other users' permissions")

    effective = await resolver.resolve(target_id)
    granted = [key for key in payload.permissions if key in effective]
    missing = [key for key in payload.permissions if key not in effective]
    allowed = authorize(effective, payload.permissions, mode=payload.mode)
    log.debug("Permission check for %s (%s): allowed=%s", target_id, payload.mode, allowed)
    return PermissionCheckResponse(allowed=allowed, granted=granted, missing=missing)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit", response_model=AuditLogListResponse)
async def list_audit_logs(
    action_type: Optional[AuditActionType] = Query(None, alias="actionType"),
    target_type: Optional[AuditTargetType] = Query(None, alias="targetType"),
    target_id: Optional[str] = Query(None, alias="targetId"),
    performed_by: Optional[str] = Query(None, alias="performedBy"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    page: int = 1,
    limit: int = 50,
    audit: AuditLogger = Depends(get_audit_logger),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_AUDIT))
):
    """List audit logs with optional filtering, newest first."""
    filters = AuditFilters(
        action_type=action_type,
        target_type=target_type,
        target_id=target_id,
        performed_by=performed_by,
        start_date=start_date,
        end_date=end_date,
    )
    return await audit_page(audit, filters, page, limit)


@router.get("/audit/{entry_id}", response_model=AuditLogResponse)
async def get_audit_log(
    entry_id: int,
    audit: AuditLogger = Depends(get_audit_logger),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_AUDIT))
):
    return audit_response(await audit.get(entry_id))


# ============================================================================
# Analytics, Cache and Export Routes
# ============================================================================

@router.get("/analytics/role-distribution", response_model=List[RoleDistributionRow])
async def role_distribution(
    analytics: AnalyticsAggregator = Depends(get_analytics),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_ANALYTICS))
):
    """Users per role, split into active and inactive."""
    return [RoleDistributionRow(**row) for row in await analytics.role_distribution()]


@router.post("/cache/clear", response_model=CacheClearResponse)
async def clear_cache(
    payload: CacheClearRequest,
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    audit: AuditLogger = Depends(get_audit_logger),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_UPDATE))
):
    """Drop cached permissions for a user, a role, or everyone."""
    if payload.user_id and payload.role_key:
        raise ValidationError("Specify userId or roleKey, not both")

    if payload.user_id:
        if await db.get(User, payload.user_id) is None:
            raise NotFoundError(f"User {payload.user_id} not found")
        cache.invalidate(payload.user_id)
        cleared, target_type, target_id = "user", AuditTargetType.USER, payload.user_id
    elif payload.role_key:
        if await db.get(Role, payload.role_key) is None:
            raise NotFoundError(f"Role '{payload.role_key}' not found")
        cache.invalidate_role(payload.role_key)
        cleared, target_type, target_id = "role", AuditTargetType.ROLE, payload.role_key
    else:
        cache.invalidate_all()
        cleared, target_type, target_id = "all", AuditTargetType.SYSTEM, None

    await audit.record(
        AuditActionType.CACHE_CLEAR,
        target_type,
        target_id,
        current_user.id,
        new_value={"scope": cleared},
    )
    return CacheClearResponse(cleared=cleared, target=target_id)


@router.get("/export", response_model=ExportResponse)
async def export_configuration(
    registry: PermissionRegistry = Depends(get_registry),
    catalog: RoleCatalog = Depends(get_role_catalog),
    clock=Depends(get_clock),
    current_user: User = Depends(require_permission(PERMISSION_CONTROL_READ))
):
    """Snapshot of the registry and every role's defaults."""
    counts = await catalog.user_counts()
    return ExportResponse(
        exported_at=clock(),
        categories=category_map(await registry.list_categories()),
        roles=[role_response(role, current_user, counts.get(role.key, 0)) for role in await catalog.list_roles()],
    )
