"""
Pydantic schemas for permission management.

Request and response models for the registry, roles, custom grants and the
audit trail. JSON field names are camelCase; Python attribute names stay
snake_case.
"""
from datetime import datetime
from typing import Dict, Any, List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from app.features.permissions.models import AuditActionType, AuditTargetType


class CamelModel(BaseModel):
    """Base schema serializing to camelCase and accepting either case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# Registry Schemas
# ============================================================================

class CategoryPermission(CamelModel):
    key: str
    name: str
    description: Optional[str] = None


class CategoryResponse(CamelModel):
    """One permission category with its permissions in display order."""
    category_name: str
    permissions: List[CategoryPermission] = []


class PermissionResponse(CamelModel):
    key: str
    name: str
    description: Optional[str] = None
    category: str = Field(..., description="Owning category key")


# ============================================================================
# Role Schemas
# ============================================================================

class RoleResponse(CamelModel):
    """Role with its default permissions and what the caller may do with it."""
    key: str
    name: str
    description: Optional[str] = None
    hierarchy: int = Field(..., description="Hierarchy level, higher is more privileged")
    permissions: List[str] = []
    permission_count: int = 0
    user_count: int = 0
    can_modify: bool = False
    is_protected: bool = False


class RoleUpdate(CamelModel):
    """Full replacement of a role's default permissions (or of one category's share)."""
    permissions: List[str] = Field(..., description="Permission keys")
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator('permissions')
    @classmethod
    def strip_keys(cls, v: List[str]) -> List[str]:
        return [key.strip() for key in v]


# ============================================================================
# Custom Grant Schemas
# ============================================================================

class GrantRequest(CamelModel):
    permission_key: str = Field(..., min_length=1, max_length=100)
    reason: str = Field(..., min_length=1, max_length=1000, description="Why the grant is needed")
    expires_at: Optional[datetime] = Field(None, description="Grant stops resolving after this instant")


class RevokeRequest(CamelModel):
    permission_key: str = Field(..., min_length=1, max_length=100)
    reason: str = Field(..., min_length=1, max_length=1000)


class GrantResponse(CamelModel):
    id: str
    user_id: str
    permission_key: str
    granted_by: str
    reason: str
    granted_at: datetime
    expires_at: Optional[datetime] = None
    revoked: bool = False
    revoked_by: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoke_reason: Optional[str] = None
    active: bool = Field(False, description="Not revoked and not expired at response time")


class RevokeResponse(CamelModel):
    ok: bool = True
    grant: GrantResponse


class ResetResponse(CamelModel):
    revoked_count: int


class BulkGrantRequest(CamelModel):
    items: List[GrantRequest] = Field(..., min_length=1)


class BulkRevokeRequest(CamelModel):
    items: List[RevokeRequest] = Field(..., min_length=1)


class BulkItemResponse(CamelModel):
    permission_key: str
    success: bool
    error: Optional[Dict[str, Any]] = None
    grant: Optional[GrantResponse] = None


class BulkResponse(CamelModel):
    results: List[BulkItemResponse]
    succeeded: int
    failed: int


# ============================================================================
# User Permissions Response
# ============================================================================

class UserSummary(CamelModel):
    id: str
    email: str
    name: str
    role_key: str
    is_active: bool


class UserPermissionsResponse(CamelModel):
    """Role defaults, raw custom grants and the resolved effective set."""
    user: UserSummary
    role_permissions: List[str] = []
    custom_grants: List[GrantResponse] = []
    effective_permissions: List[str] = []


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(CamelModel):
    permissions: List[str] = Field(..., min_length=1)
    user_id: Optional[str] = Field(None, description="Defaults to the caller")
    mode: Literal["any", "all"] = "all"


class PermissionCheckResponse(CamelModel):
    allowed: bool
    granted: List[str] = []
    missing: List[str] = []


# ============================================================================
# Audit Log Schemas
# ============================================================================

class PermissionChanges(CamelModel):
    added: List[str] = []
    removed: List[str] = []


class AuditLogResponse(CamelModel):
    id: int
    action_type: AuditActionType
    target_type: AuditTargetType
    target_id: Optional[str] = None
    performed_by: str
    performed_at: datetime
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    changes: Optional[PermissionChanges] = None


class PaginationInfo(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class AuditLogListResponse(CamelModel):
    """Schema for paginated audit log list."""
    data: List[AuditLogResponse]
    pagination: PaginationInfo


# ============================================================================
# Cache, Analytics and Export Schemas
# ============================================================================

class CacheClearRequest(CamelModel):
    """Omit both fields to clear every cached entry."""
    user_id: Optional[str] = None
    role_key: Optional[str] = None


class CacheClearResponse(CamelModel):
    cleared: Literal["user", "role", "all"]
    target: Optional[str] = None


class RoleDistributionRow(CamelModel):
    role: str
    role_name: str
    total_users: int
    active_users: int
    inactive_users: int


class ExportResponse(CamelModel):
    exported_at: datetime
    categories: Dict[str, CategoryResponse]
    roles: List[RoleResponse]
