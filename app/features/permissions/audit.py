"""
Append-only permission audit trail.

The logger only ever adds rows. Diffs between snapshots are computed on
read; the store never materializes them.
"""
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.permissions.exceptions import ConsistencyError, NotFoundError, ValidationError
from app.features.permissions.models import AuditLog, AuditActionType, AuditTargetType
from app.utils import get_logger, utcnow, as_utc


log = get_logger(__name__)


def compare_permissions(current: Iterable[str], new: Iterable[str]) -> Dict[str, List[str]]:
    """
    Compare two permission sets.

    Returns:
        {"added": [...], "removed": [...], "unchanged": [...]}, each sorted
    """
    current, new = set(current), set(new)
    return {
        "added": sorted(new - current),
        "removed": sorted(current - new),
        "unchanged": sorted(current & new),
    }


def diff(entry: AuditLog) -> Optional[Dict[str, List[str]]]:
    """Added/removed keys for a ROLE_UPDATE entry, None for other actions."""
    if entry.action_type != AuditActionType.ROLE_UPDATE:
        return None
    old = (entry.old_value or {}).get("permissions", [])
    new = (entry.new_value or {}).get("permissions", [])
    changes = compare_permissions(old, new)
    return {"added": changes["added"], "removed": changes["removed"]}


@dataclass
class AuditFilters:
    action_type: Optional[AuditActionType] = None
    target_type: Optional[AuditTargetType] = None
    target_id: Optional[str] = None
    performed_by: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass
class AuditPage:
    data: List[AuditLog]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


class AuditLogger:
    """Writes and queries audit entries within the caller's session."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def append(
        self,
        action_type: AuditActionType,
        target_type: AuditTargetType,
        target_id: Optional[str],
        performed_by: str,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> AuditLog:
        """
        Add an audit entry to the current transaction.

        The entry is flushed so its id is assigned, but only becomes durable
        when the caller commits together with the mutation it describes.
        """
        entry = AuditLog(
            action_type=action_type,
            target_type=target_type,
            target_id=target_id,
            performed_by=performed_by,
            performed_at=self.clock(),
            old_value=old_value,
            new_value=new_value,
            reason=reason,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def record(
        self,
        action_type: AuditActionType,
        target_type: AuditTargetType,
        target_id: Optional[str],
        performed_by: str,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> AuditLog:
        """
        Append an entry and commit it together with the pending mutation.

        If either step fails the whole transaction is rolled back, so a
        mutation is never visible without its audit entry.

        Raises:
            ConsistencyError: audit append or commit failed (retryable)
        """
        try:
            entry = await self.append(
                action_type, target_type, target_id, performed_by,
                old_value=old_value, new_value=new_value, reason=reason,
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            log.exception("Audit append failed for %s on %s:%s; rolling back", action_type.value,
                          target_type.value, target_id)
            await self.db.rollback()
            raise ConsistencyError("Change could not be recorded and was rolled back; retry the request") from exc

        log.info(
            "Audit: id=%s user=%s action=%s target=%s:%s",
            entry.id, performed_by, action_type.value, target_type.value, target_id
        )
        return entry

    async def get(self, entry_id: int) -> AuditLog:
        entry = await self.db.get(AuditLog, entry_id)
        if entry is None:
            raise NotFoundError(f"Audit entry {entry_id} not found")
        return entry

    async def query(self, filters: AuditFilters, page: int = 1, limit: int = 50) -> AuditPage:
        """
        Filtered, paginated audit entries, newest first.

        Filters are ANDed together; None means no constraint. Ties on
        performed_at are broken by id so pages are stable.
        """
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1 or limit > config.AUDIT_MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {config.AUDIT_MAX_PAGE_SIZE}")

        start_date, end_date = as_utc(filters.start_date), as_utc(filters.end_date)
        if start_date and end_date and start_date > end_date:
            raise ValidationError("startDate must not be after endDate")

        stmt = select(AuditLog)
        if filters.action_type:
            stmt = stmt.where(AuditLog.action_type == filters.action_type)
        if filters.target_type:
            stmt = stmt.where(AuditLog.target_type == filters.target_type)
        if filters.target_id:
            stmt = stmt.where(AuditLog.target_id == filters.target_id)
        if filters.performed_by:
            stmt = stmt.where(AuditLog.performed_by == filters.performed_by)
        if start_date:
            stmt = stmt.where(AuditLog.performed_at >= start_date)
        if end_date:
            stmt = stmt.where(AuditLog.performed_at <= end_date)

        # Get total count
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar() or 0

        # Get paginated results
        stmt = (
            stmt.order_by(AuditLog.performed_at.desc(), AuditLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return AuditPage(data=list(result.scalars().all()), page=page, limit=limit, total=total)
