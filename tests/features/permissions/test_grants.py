"""Tests for custom grant, revoke and reset."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.locks import KeyedLock
from app.features.permissions.audit import AuditFilters, AuditLogger
from app.features.permissions.exceptions import (
    AuthorizationError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    UnknownPermissionError,
    ValidationError,
)
from app.features.permissions.grants import GrantRevokeManager
from app.features.permissions.models import AuditActionType, AuditLog, CustomPermissionGrant
from app.features.users.models import User


COORDINATOR_DEFAULTS = {
    "users.read",
    "assets.create", "assets.read", "assets.update", "assets.assign", "assets.maintenance",
    "tickets.create", "tickets.read", "tickets.update",
    "reports.view",
}


async def audit_count(session) -> int:
    return (await session.execute(select(func.count(AuditLog.id)))).scalar()


async def grant_rows(session, user_id: str) -> list[CustomPermissionGrant]:
    stmt = select(CustomPermissionGrant).where(CustomPermissionGrant.user_id == user_id)
    return list((await session.execute(stmt)).scalars().all())


@pytest.fixture
def failing_audit(monkeypatch):
    """Make every audit append fail from here on."""
    def install():
        async def failing_append(self, *args, **kwargs):
            raise SQLAlchemyError("audit store unavailable")

        monkeypatch.setattr(AuditLogger, "append", failing_append)

    return install


@pytest.fixture
async def admin(users, load_user):
    return await load_user(users["admin"])


@pytest.fixture
def coordinator_id(users):
    return users["coordinator"]


class TestGrant:
    """Adding permissions beyond the role defaults."""

    async def test_grant_resolves_and_audits(self, db, grant_manager, resolver, admin, coordinator_id, clock):
        await resolver.resolve(coordinator_id)

        grant = await grant_manager.grant(coordinator_id, "reports.export", admin, "Quarterly audit")

        assert grant.id
        assert grant.granted_by == admin.id
        assert grant.granted_at == clock()
        assert grant.expires_at is None
        assert not grant.revoked
        assert "reports.export" in await resolver.resolve(coordinator_id)

        entries = (await AuditLogger(db).query(AuditFilters(action_type=AuditActionType.GRANT))).data
        assert len(entries) == 1
        assert entries[0].target_id == coordinator_id
        assert entries[0].new_value == {"grantId": grant.id, "permissionKey": "reports.export", "expiresAt": None}
        assert entries[0].reason == "Quarterly audit"

    async def test_duplicate_active_grant_conflicts(self, grant_manager, admin, coordinator_id):
        await grant_manager.grant(coordinator_id, "reports.export", admin, "First")
        with pytest.raises(ConflictError):
            await grant_manager.grant(coordinator_id, "reports.export", admin, "Second")

    async def test_unknown_key(self, grant_manager, admin, coordinator_id):
        with pytest.raises(UnknownPermissionError):
            await grant_manager.grant(coordinator_id, "reports.shred", admin, "No such thing")

    async def test_unknown_user(self, grant_manager, admin):
        with pytest.raises(NotFoundError):
            await grant_manager.grant("01HZZZZZZZZZZZZZZZZZZZZZZZ", "reports.export", admin, "Ghost")

    async def test_expiry_must_be_after_grant_time(self, grant_manager, admin, coordinator_id, clock):
        with pytest.raises(ValidationError):
            await grant_manager.grant(coordinator_id, "reports.export", admin, "Late", expires_at=clock())
        with pytest.raises(ValidationError):
            await grant_manager.grant(
                coordinator_id, "reports.export", admin, "Late", expires_at=clock() - timedelta(days=1)
            )

    async def test_reason_required(self, grant_manager, admin, coordinator_id):
        with pytest.raises(ValidationError):
            await grant_manager.grant(coordinator_id, "reports.export", admin, "   ")

    async def test_actor_must_outrank_target(self, grant_manager, users, load_user):
        """Only a strictly higher role manages a user's grants."""
        coordinator = await load_user(users["coordinator"])
        admin = await load_user(users["admin"])

        with pytest.raises(AuthorizationError):
            await grant_manager.grant(users["second_coordinator"], "reports.export", coordinator, "Peer")
        with pytest.raises(AuthorizationError):
            await grant_manager.grant(users["admin"], "reports.export", coordinator, "Upward")
        with pytest.raises(AuthorizationError):
            await grant_manager.grant(users["admin"], "system.logs", admin, "Self")

    async def test_expired_grant_stops_resolving_but_stays_listed(
        self, grant_manager, resolver, admin, coordinator_id, clock
    ):
        """Expiry is lazy: the record stays, unrevoked, and simply stops counting."""
        await grant_manager.grant(
            coordinator_id, "reports.export", admin, "One day", expires_at=clock() + timedelta(days=1)
        )
        assert "reports.export" in await resolver.resolve(coordinator_id)

        clock.advance(days=2)

        assert "reports.export" not in await resolver.resolve(coordinator_id)
        grants = await grant_manager.list_grants(coordinator_id)
        assert [g.permission_key for g in grants] == ["reports.export"]
        assert grants[0].revoked is False

    async def test_regrant_after_expiry(self, grant_manager, admin, coordinator_id, clock):
        await grant_manager.grant(
            coordinator_id, "reports.export", admin, "Short", expires_at=clock() + timedelta(hours=1)
        )
        clock.advance(hours=2)

        await grant_manager.grant(coordinator_id, "reports.export", admin, "Again")

        assert len(await grant_manager.list_grants(coordinator_id)) == 2
        assert len(await grant_manager.active_grants(coordinator_id)) == 1


class TestRevoke:
    """Ending custom grants."""

    async def test_revoke_restores_previous_set(self, db, grant_manager, resolver, admin, coordinator_id, clock):
        before = await resolver.resolve(coordinator_id)
        await grant_manager.grant(coordinator_id, "reports.export", admin, "Temporary")
        clock.advance(minutes=5)

        grant = await grant_manager.revoke(coordinator_id, "reports.export", admin, "Done")

        assert grant.revoked
        assert grant.revoked_by == admin.id
        assert grant.revoked_at == clock()
        assert grant.revoke_reason == "Done"
        assert await resolver.resolve(coordinator_id) == before == COORDINATOR_DEFAULTS
        assert await grant_manager.list_grants(coordinator_id) == []
        assert len(await grant_manager.list_grants(coordinator_id, include_revoked=True)) == 1

        entries = (await AuditLogger(db).query(AuditFilters(action_type=AuditActionType.REVOKE))).data
        assert entries[0].old_value["permissionKey"] == "reports.export"
        assert entries[0].new_value is None

    async def test_role_default_cannot_be_revoked(self, grant_manager, resolver, admin, coordinator_id):
        with pytest.raises(NotFoundError):
            await grant_manager.revoke(coordinator_id, "assets.read", admin, "Not theirs to lose")
        assert "assets.read" in await resolver.resolve(coordinator_id)

    async def test_revoke_without_grant(self, grant_manager, admin, coordinator_id):
        with pytest.raises(NotFoundError):
            await grant_manager.revoke(coordinator_id, "reports.export", admin, "Nothing there")

    async def test_revoke_expired_grant(self, grant_manager, admin, coordinator_id, clock):
        await grant_manager.grant(
            coordinator_id, "reports.export", admin, "Short", expires_at=clock() + timedelta(hours=1)
        )
        clock.advance(hours=2)
        with pytest.raises(NotFoundError):
            await grant_manager.revoke(coordinator_id, "reports.export", admin, "Already gone")


class TestReset:
    """Revoking every custom grant at once."""

    async def test_reset_revokes_all_with_one_audit_entry(
        self, db, grant_manager, resolver, admin, coordinator_id
    ):
        await grant_manager.grant(coordinator_id, "reports.export", admin, "A")
        await grant_manager.grant(coordinator_id, "tickets.close", admin, "B")

        count = await grant_manager.reset_custom(coordinator_id, admin, "Back to defaults")

        assert count == 2
        assert await resolver.resolve(coordinator_id) == COORDINATOR_DEFAULTS
        entries = (await AuditLogger(db).query(AuditFilters(action_type=AuditActionType.RESET))).data
        assert len(entries) == 1
        assert entries[0].old_value == {"permissions": ["reports.export", "tickets.close"]}
        assert entries[0].new_value == {"permissions": []}

    async def test_reset_with_nothing_to_revoke(self, db, grant_manager, admin, coordinator_id):
        assert await grant_manager.reset_custom(coordinator_id, admin) == 0
        assert (await AuditLogger(db).query(AuditFilters())).total == 0


class TestBulk:
    """Per-item results for bulk grant and revoke."""

    async def test_bulk_grant_reports_each_item(self, grant_manager, resolver, admin, coordinator_id):
        results = await grant_manager.bulk_grant(coordinator_id, [
            {"permission_key": "reports.export", "reason": "Needed"},
            {"permission_key": "reports.shred", "reason": "Unknown"},
            {"permission_key": "reports.export", "reason": "Duplicate"},
            {"permission_key": "tickets.close", "reason": "Needed"},
        ], admin)

        assert [r.success for r in results] == [True, False, False, True]
        assert results[1].error["kind"] == "unknown_permission"
        assert results[2].error["kind"] == "conflict"
        assert {"reports.export", "tickets.close"} <= await resolver.resolve(coordinator_id)

    async def test_bulk_revoke(self, grant_manager, admin, coordinator_id):
        await grant_manager.grant(coordinator_id, "reports.export", admin, "Needed")

        results = await grant_manager.bulk_revoke(coordinator_id, [
            {"permission_key": "reports.export", "reason": "Done"},
            {"permission_key": "assets.read", "reason": "Role default"},
        ], admin)

        assert [r.success for r in results] == [True, False]
        assert results[1].error["kind"] == "not_found"


class TestTransactions:
    """A grant change is never visible without its audit entry, and one user's changes run one at a time."""

    async def test_grant_rolls_back_when_audit_fails(
        self, session_factory, grant_manager, admin, coordinator_id, failing_audit
    ):
        failing_audit()

        with pytest.raises(ConsistencyError) as exc_info:
            await grant_manager.grant(coordinator_id, "reports.export", admin, "Month end")
        assert exc_info.value.retryable

        async with session_factory() as fresh:
            assert await grant_rows(fresh, coordinator_id) == []
            assert await audit_count(fresh) == 0

    async def test_revoke_rolls_back_when_audit_fails(
        self, session_factory, grant_manager, admin, coordinator_id, failing_audit
    ):
        await grant_manager.grant(coordinator_id, "reports.export", admin, "Month end")
        failing_audit()

        with pytest.raises(ConsistencyError):
            await grant_manager.revoke(coordinator_id, "reports.export", admin, "Done")

        async with session_factory() as fresh:
            rows = await grant_rows(fresh, coordinator_id)
            assert [(g.permission_key, g.revoked, g.revoked_by) for g in rows] == [
                ("reports.export", False, None)
            ]
            assert await audit_count(fresh) == 1

    async def test_reset_rolls_back_when_audit_fails(
        self, session_factory, grant_manager, admin, coordinator_id, failing_audit
    ):
        await grant_manager.grant(coordinator_id, "reports.export", admin, "A")
        await grant_manager.grant(coordinator_id, "tickets.close", admin, "B")
        failing_audit()

        with pytest.raises(ConsistencyError):
            await grant_manager.reset_custom(coordinator_id, admin, "Back to defaults")

        async with session_factory() as fresh:
            rows = await grant_rows(fresh, coordinator_id)
            assert len(rows) == 2
            assert not any(g.revoked for g in rows)
            assert await audit_count(fresh) == 2

    async def test_concurrent_grant_and_revoke_of_one_key(self, session_factory, cache, clock, users):
        """Whichever runs first, the stored grant and the audit trail agree."""
        locks = KeyedLock()
        target = users["coordinator"]

        async def run(operation: str):
            async with session_factory() as session:
                actor = await session.get(User, users["admin"])
                manager = GrantRevokeManager(session, cache, locks, clock)
                if operation == "grant":
                    return await manager.grant(target, "reports.export", actor, "Month end")
                return await manager.revoke(target, "reports.export", actor, "Done")

        granted, revoked = await asyncio.gather(run("grant"), run("revoke"), return_exceptions=True)

        assert not isinstance(granted, Exception)
        async with session_factory() as session:
            rows = await grant_rows(session, target)
            assert len(rows) == 1
            if isinstance(revoked, NotFoundError):
                assert rows[0].revoked is False
                assert await audit_count(session) == 1
            else:
                assert rows[0].revoked is True
                assert await audit_count(session) == 2

    async def test_concurrent_duplicate_grants(self, session_factory, cache, clock, users):
        """Only one of two simultaneous grants of the same key is stored."""
        locks = KeyedLock()
        target = users["coordinator"]

        async def grant(reason: str):
            async with session_factory() as session:
                actor = await session.get(User, users["admin"])
                manager = GrantRevokeManager(session, cache, locks, clock)
                return await manager.grant(target, "reports.export", actor, reason)

        results = await asyncio.gather(grant("First"), grant("Second"), return_exceptions=True)

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        async with session_factory() as session:
            assert len(await grant_rows(session, target)) == 1
            assert await audit_count(session) == 1
