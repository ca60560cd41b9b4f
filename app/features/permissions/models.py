"""
Permission registry, role, custom grant and audit models.

This module holds the persisted state of the permission engine:
- Permission categories partitioning the permission registry
- Roles with a hierarchy level and default permission set
- Per-user custom grants, optionally time-bounded
- An append-only audit trail of every mutating action
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Table, Column, JSON, Text, Integer, Boolean, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.database.base import Base, TimestampMixin, UTCDateTime, generate_ulid
from app.features.permissions.hierarchy import HierarchyLevel


class AuditActionType(str, enum.Enum):
    ROLE_UPDATE = "ROLE_UPDATE"
    GRANT = "GRANT"
    REVOKE = "REVOKE"
    RESET = "RESET"
    CACHE_CLEAR = "CACHE_CLEAR"


class AuditTargetType(str, enum.Enum):
    ROLE = "ROLE"
    USER = "USER"
    SYSTEM = "SYSTEM"


# ============================================================================
# Association Tables
# ============================================================================

# Role default permissions
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_key", String(50), ForeignKey("roles.key", ondelete="CASCADE"), primary_key=True),
    Column("permission_key", String(100), ForeignKey("permissions.key", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Registry
# ============================================================================

class PermissionCategory(Base):
    """
    Group of permissions shown together in the console.

    Categories partition the registry: every permission belongs to exactly one.
    """
    __tablename__ = "permission_categories"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        back_populates="category",
        order_by="Permission.display_order",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<PermissionCategory(key={self.key!r}, name={self.name!r})>"


class Permission(Base):
    """
    A flat permission key of the form "<domain>.<action>".

    Examples: assets.read, tickets.assign, permission-control.audit
    """
    __tablename__ = "permissions"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_key: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("permission_categories.key"),
        nullable=False,
        index=True
    )
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    category: Mapped["PermissionCategory"] = relationship(
        "PermissionCategory",
        back_populates="permissions",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Permission(key={self.key!r}, category={self.category_key})>"


# ============================================================================
# Roles
# ============================================================================

class Role(Base, TimestampMixin):
    """
    Role template with a default permission set.

    Roles are provisioned once and never deleted. The protected role sits at
    the top of the hierarchy and its defaults cannot be changed by anyone.
    """
    __tablename__ = "roles"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hierarchy_level: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    is_protected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        lazy="selectin"
    )

    @property
    def level(self) -> HierarchyLevel:
        return HierarchyLevel(self.hierarchy_level)

    @property
    def permission_keys(self) -> frozenset[str]:
        return frozenset(p.key for p in self.permissions)

    def __repr__(self) -> str:
        return f"<Role(key={self.key!r}, level={self.hierarchy_level}, protected={self.is_protected})>"


# ============================================================================
# Custom Grants
# ============================================================================

class CustomPermissionGrant(Base):
    """
    Additive per-user permission outside the role default.

    A grant is active while it is not revoked and not past its expiry.
    Expired grants stay in storage; they simply stop resolving.
    """
    __tablename__ = "custom_permission_grants"
    __table_args__ = (
        Index("ix_custom_grants_user_key", "user_id", "permission_key"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    permission_key: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("permissions.key"),
        nullable=False
    )

    granted_by: Mapped[str] = mapped_column(String(26), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revoked_by: Mapped[str | None] = mapped_column(String(26), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_active(self, now: datetime) -> bool:
        if self.revoked:
            return False
        return self.expires_at is None or self.expires_at > now

    def __repr__(self) -> str:
        return (
            f"<CustomPermissionGrant(id={self.id}, user_id={self.user_id}, "
            f"key={self.permission_key!r}, revoked={self.revoked})>"
        )


# ============================================================================
# Audit
# ============================================================================

class AuditLog(Base):
    """
    Immutable record of one mutating action.

    old_value and new_value hold full snapshots; diffs are computed on read.
    """
    __tablename__ = "permission_audit_logs"

    # Monotonic, assigned by the database
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    action_type: Mapped[AuditActionType] = mapped_column(
        SQLEnum(AuditActionType, native_enum=False, length=20),
        nullable=False,
        index=True
    )
    target_type: Mapped[AuditTargetType] = mapped_column(
        SQLEnum(AuditTargetType, native_enum=False, length=10),
        nullable=False,
        index=True
    )
    target_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)

    performed_by: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    performed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    old_value: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action_type}, target={self.target_type}:{self.target_id})>"
