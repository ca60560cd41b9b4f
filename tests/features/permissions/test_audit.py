"""Tests for the append-only audit trail."""

from datetime import timedelta

import pytest

from app.features.permissions.audit import AuditFilters, compare_permissions, diff
from app.features.permissions.exceptions import NotFoundError, ValidationError
from app.features.permissions.models import AuditActionType, AuditLog, AuditTargetType


class TestComparePermissions:

    def test_compare(self):
        result = compare_permissions(["a.read", "a.create"], ["a.read", "a.assign"])
        assert result == {"added": ["a.assign"], "removed": ["a.create"], "unchanged": ["a.read"]}

    def test_diff_only_for_role_updates(self):
        entry = AuditLog(
            action_type=AuditActionType.ROLE_UPDATE,
            target_type=AuditTargetType.ROLE,
            old_value={"permissions": ["assets.create", "assets.read"]},
            new_value={"permissions": ["assets.assign", "assets.read"]},
        )
        assert diff(entry) == {"added": ["assets.assign"], "removed": ["assets.create"]}

        grant = AuditLog(action_type=AuditActionType.GRANT, target_type=AuditTargetType.USER)
        assert diff(grant) is None


@pytest.fixture
async def history(grant_manager, clock, users, load_user):
    """Five grants and one revoke, one minute apart."""
    admin = await load_user(users["admin"])
    for key in ("reports.export", "tickets.close", "tickets.assign", "system.logs", "assets.transfer"):
        await grant_manager.grant(users["employee"], key, admin, f"Need {key}")
        clock.advance(minutes=1)
    await grant_manager.revoke(users["employee"], "system.logs", admin, "No longer needed")
    clock.advance(minutes=1)
    return admin


class TestAuditQuery:
    """Filtering and pagination of audit entries."""

    async def test_one_entry_per_mutation(self, audit_logger, history):
        page = await audit_logger.query(AuditFilters())
        assert page.total == 6

    async def test_newest_first_with_pagination(self, audit_logger, history):
        first = await audit_logger.query(AuditFilters(), page=1, limit=4)
        second = await audit_logger.query(AuditFilters(), page=2, limit=4)

        assert first.pages == second.pages == 2
        assert len(first.data) == 4
        assert len(second.data) == 2
        assert first.data[0].action_type == AuditActionType.REVOKE
        stamps = [e.performed_at for e in first.data + second.data]
        assert stamps == sorted(stamps, reverse=True)

    async def test_filters_are_anded(self, audit_logger, history, users):
        page = await audit_logger.query(AuditFilters(
            action_type=AuditActionType.GRANT,
            target_type=AuditTargetType.USER,
            target_id=users["employee"],
            performed_by=history.id,
        ))
        assert page.total == 5

        page = await audit_logger.query(AuditFilters(action_type=AuditActionType.GRANT, target_id="nobody"))
        assert page.total == 0
        assert page.pages == 0

    async def test_date_range(self, audit_logger, history, clock):
        # Entries were written at t0 .. t0+5min; clock now sits at t0+6min
        start = clock() - timedelta(minutes=4)
        end = clock() - timedelta(minutes=2)

        page = await audit_logger.query(AuditFilters(start_date=start, end_date=end))

        assert page.total == 3
        assert all(start <= e.performed_at <= end for e in page.data)

    async def test_invalid_arguments(self, audit_logger, clock):
        with pytest.raises(ValidationError):
            await audit_logger.query(AuditFilters(), page=0)
        with pytest.raises(ValidationError):
            await audit_logger.query(AuditFilters(), limit=0)
        with pytest.raises(ValidationError):
            await audit_logger.query(AuditFilters(), limit=201)
        with pytest.raises(ValidationError):
            await audit_logger.query(AuditFilters(start_date=clock(), end_date=clock() - timedelta(days=1)))

    async def test_get(self, audit_logger, history):
        newest = (await audit_logger.query(AuditFilters(), limit=1)).data[0]
        assert (await audit_logger.get(newest.id)).action_type == AuditActionType.REVOKE

        with pytest.raises(NotFoundError):
            await audit_logger.get(99999)

    async def test_ids_are_monotonic(self, audit_logger, history):
        entries = (await audit_logger.query(AuditFilters())).data
        ids = [e.id for e in entries]
        assert ids == sorted(ids, reverse=True)
