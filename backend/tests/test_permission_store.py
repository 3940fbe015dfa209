"""Tests for the persisted permission matrix."""

import pytest
from sqlalchemy import func, select

from hms.auth.permissions import Action, Module
from hms.auth.roles import SUPER_ROLE, Role
from hms.models import AuditLog, RolePermission
from hms.services.audit_service import AuditService
from hms.services.permission_store import PermissionStore

ACTOR = "ADMIN:1"


@pytest.mark.asyncio
class TestPermissionStore:
    async def test_upsert_creates_row(self, db_session):
        store = PermissionStore(db_session)
        grant = await store.upsert_grant(Role.DOCTOR, Module.PATIENTS,
                                         {Action.VIEW: True, Action.EDIT: True}, actor=ACTOR)

        assert grant.allows(Action.VIEW) and grant.allows(Action.EDIT)
        assert not grant.allows(Action.DELETE)
        stored = await store.get_grant(Role.DOCTOR, Module.PATIENTS)
        assert stored == grant

    async def test_upsert_replaces_existing_row(self, db_session):
        store = PermissionStore(db_session)
        await store.upsert_grant(Role.DOCTOR, Module.PATIENTS, {Action.VIEW: True}, actor=ACTOR)
        await store.upsert_grant(Role.DOCTOR, Module.PATIENTS, {Action.EXPORT: True}, actor=ACTOR)

        count = (await db_session.execute(select(func.count()).select_from(RolePermission))).scalar()
        assert count == 1
        grant = await store.get_grant(Role.DOCTOR, Module.PATIENTS)
        assert grant.actions() == {a: a is Action.EXPORT for a in Action}

    async def test_super_admin_cannot_be_overridden(self, db_session):
        with pytest.raises(ValueError):
            await PermissionStore(db_session).upsert_grant(SUPER_ROLE, Module.SETTINGS, {}, actor=ACTOR)

    async def test_reset_removes_row(self, db_session):
        store = PermissionStore(db_session)
        await store.upsert_grant(Role.NURSE, Module.OXYGEN, {}, actor=ACTOR)
        assert await store.reset_grant(Role.NURSE, Module.OXYGEN, actor=ACTOR) is True
        assert await store.get_grant(Role.NURSE, Module.OXYGEN) is None
        assert await store.reset_grant(Role.NURSE, Module.OXYGEN, actor=ACTOR) is False

    async def test_list_filters_by_role_and_skips_unknown_rows(self, db_session):
        store = PermissionStore(db_session)
        await store.upsert_grant(Role.NURSE, Module.OXYGEN, {Action.VIEW: True}, actor=ACTOR)
        await store.upsert_grant(Role.DOCTOR, Module.BILLING, {Action.VIEW: True}, actor=ACTOR)
        db_session.add(RolePermission(role="JANITOR", module="PATIENTS", can_view=True))
        await db_session.flush()

        assert len(await store.list_grants()) == 2
        index = await store.grant_index(Role.NURSE)
        assert list(index) == [(Role.NURSE, Module.OXYGEN)]

    async def test_changes_are_audited_in_intact_chain(self, db_session):
        store = PermissionStore(db_session)
        await store.upsert_grant(Role.DOCTOR, Module.PATIENTS, {Action.VIEW: True}, actor=ACTOR)
        await store.upsert_grant(Role.DOCTOR, Module.PATIENTS, {Action.EDIT: True}, actor=ACTOR)
        await store.reset_grant(Role.DOCTOR, Module.PATIENTS, actor=ACTOR)

        audit = AuditService(db_session)
        entries = await audit.permission_history(role="DOCTOR", module="PATIENTS")
        assert [e.event_type for e in entries] == ["permission_reset", "permission_granted",
                                                   "permission_granted"]
        assert entries[1].details["before"]["can_view"] is True
        assert entries[2].details["before"] is None
        assert (await audit.verify_chain_integrity())["valid"] is True

    async def test_tampering_breaks_chain(self, db_session):
        store = PermissionStore(db_session)
        await store.upsert_grant(Role.DOCTOR, Module.PATIENTS, {Action.VIEW: True}, actor=ACTOR)
        await store.upsert_grant(Role.NURSE, Module.OXYGEN, {Action.VIEW: True}, actor=ACTOR)

        first = (await db_session.execute(select(AuditLog).order_by(AuditLog.id))).scalars().first()
        first.actor = "someone-else"
        await db_session.flush()

        result = await AuditService(db_session).verify_chain_integrity()
        assert result["valid"] is False
        assert result["first_invalid"] == first.event_id

    async def test_history_filters_by_role_or_module(self, db_session):
        store = PermissionStore(db_session)
        await store.upsert_grant(Role.OPD_MANAGER, Module.BILLING, {}, actor=ACTOR)
        await store.upsert_grant(Role.DOCTOR, Module.BILLING, {}, actor=ACTOR)
        await store.upsert_grant(Role.DOCTOR, Module.OXYGEN, {}, actor=ACTOR)

        audit = AuditService(db_session)
        by_role = await audit.permission_history(role="DOCTOR")
        assert [e.resource_id for e in by_role] == ["DOCTOR:OXYGEN", "DOCTOR:BILLING"]
        by_module = await audit.permission_history(module="BILLING")
        assert [e.resource_id for e in by_module] == ["DOCTOR:BILLING", "OPD_MANAGER:BILLING"]
