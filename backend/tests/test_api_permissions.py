"""Tests for the permissions API and its role guards."""

import pytest
from httpx import ASGITransport, AsyncClient

from hms.api.deps import get_db
from hms.auth.permissions import Action, Module
from hms.auth.roles import Role
from hms.main import app
from hms.services.notification_hub import NotificationHub
from hms.services.permission_store import PermissionStore
from tests.conftest import FakeWebSocket, _committing_db, _make_auth_header

ALL_FALSE = {f"can_{a.value}": False for a in Action}


# ── Grant-fetch endpoint ─────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestCurrentPermissions:
    async def test_returns_role_and_explicit_grants(self, make_client, db_session):
        await PermissionStore(db_session).upsert_grant(
            Role.DOCTOR, Module.PATIENTS, {Action.VIEW: True, Action.EDIT: True}, actor="test")
        await PermissionStore(db_session).upsert_grant(
            Role.NURSE, Module.OXYGEN, {Action.VIEW: True}, actor="test")

        resp = await make_client("7", "DOCTOR").get("/api/permissions/current")

        assert resp.status_code == 200
        data = resp.json()
        assert data["role"] == "DOCTOR"
        assert len(data["permissions"]) == 1
        row = data["permissions"][0]
        assert row["module"] == "PATIENTS"
        assert row["can_view"] is True and row["can_delete"] is False

    async def test_super_admin_gets_no_rows(self, make_client):
        resp = await make_client("1", "SUPER_ADMIN").get("/api/permissions/current")
        assert resp.status_code == 200
        assert resp.json() == {"role": "SUPER_ADMIN", "permissions": []}

    async def test_unknown_role_authenticates_with_no_role(self, make_client):
        resp = await make_client("9", "JANITOR").get("/api/permissions/current")
        assert resp.status_code == 200
        assert resp.json()["role"] is None

    async def test_requires_token(self, make_client):
        resp = await make_client().get("/api/permissions/current")
        assert resp.status_code == 401

    async def test_rejects_invalid_token(self, make_client):
        client = make_client()
        resp = await client.get("/api/permissions/current",
                                headers={"Authorization": "Bearer not.a.token"})
        assert resp.status_code == 401


@pytest.mark.asyncio
class TestCatalog:
    async def test_catalog_lists_closed_sets(self, make_client):
        resp = await make_client("7", "DOCTOR").get("/api/permissions/catalog")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["roles"]) == len(Role)
        assert len(data["modules"]) == len(Module)
        assert [a["value"] for a in data["actions"]] == [a.value for a in Action]
        assert {"value": "BMW", "label": "Biomedical Waste"} in data["modules"]


# ── Matrix administration ────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestMatrix:
    async def test_matrix_reports_source_tier(self, make_client, db_session):
        await PermissionStore(db_session).upsert_grant(
            Role.NURSE, Module.OXYGEN, {Action.VIEW: True}, actor="test")

        resp = await make_client("2", "ADMIN").get("/api/permissions/matrix/nurse")

        assert resp.status_code == 200
        modules = {m["module"]: m for m in resp.json()["modules"]}
        assert len(modules) == len(Module)
        assert modules["OXYGEN"]["source"] == "grant"
        assert modules["OXYGEN"]["actions"]["edit"] is False
        assert modules["PATIENTS"]["source"] == "default"
        assert modules["PATIENTS"]["actions"]["edit"] is True
        assert modules["BILLING"]["source"] == "none"

    async def test_matrix_requires_users_view(self, make_client):
        resp = await make_client("7", "DOCTOR").get("/api/permissions/matrix/NURSE")
        assert resp.status_code == 403

    async def test_matrix_unknown_role_is_400(self, make_client):
        resp = await make_client("1", "SUPER_ADMIN").get("/api/permissions/matrix/JANITOR")
        assert resp.status_code == 400

    async def test_list_grants_filtered_by_role(self, make_client, db_session):
        store = PermissionStore(db_session)
        await store.upsert_grant(Role.NURSE, Module.OXYGEN, {Action.VIEW: True}, actor="test")
        await store.upsert_grant(Role.DOCTOR, Module.BILLING, {Action.VIEW: True}, actor="test")

        client = make_client("2", "ADMIN")
        assert len((await client.get("/api/permissions")).json()) == 2
        only_nurse = (await client.get("/api/permissions", params={"role": "NURSE"})).json()
        assert [g["role"] for g in only_nurse] == ["NURSE"]


@pytest.mark.asyncio
class TestGrantWrites:
    async def test_put_then_current_reflects_grant(self, make_client):
        admin = make_client("2", "ADMIN")
        body = {**ALL_FALSE, "can_view": True, "can_export": True}
        resp = await admin.put("/api/permissions/DOCTOR/BILLING", json=body)
        assert resp.status_code == 200
        assert resp.json()["can_export"] is True

        current = (await make_client("7", "DOCTOR").get("/api/permissions/current")).json()
        assert [(g["module"], g["can_export"]) for g in current["permissions"]] == [("BILLING", True)]

    async def test_grant_applies_to_guards_on_next_request(self, make_client):
        nurse = make_client("3", "NURSE")
        assert (await nurse.get("/api/permissions/matrix/DOCTOR")).status_code == 403

        await make_client("2", "ADMIN").put("/api/permissions/NURSE/USERS",
                                            json={**ALL_FALSE, "can_view": True})
        assert (await nurse.get("/api/permissions/matrix/DOCTOR")).status_code == 200

    async def test_put_requires_users_edit(self, make_client):
        resp = await make_client("7", "DOCTOR").put("/api/permissions/DOCTOR/BILLING", json=ALL_FALSE)
        assert resp.status_code == 403

    async def test_super_admin_row_rejected(self, make_client):
        resp = await make_client("1", "SUPER_ADMIN").put("/api/permissions/SUPER_ADMIN/SETTINGS",
                                                         json=ALL_FALSE)
        assert resp.status_code == 400

    async def test_unknown_module_rejected(self, make_client):
        resp = await make_client("2", "ADMIN").put("/api/permissions/DOCTOR/CAFETERIA", json=ALL_FALSE)
        assert resp.status_code == 400

    async def test_unknown_role_token_is_forbidden(self, make_client):
        resp = await make_client("9", "JANITOR").put("/api/permissions/DOCTOR/BILLING", json=ALL_FALSE)
        assert resp.status_code == 403

    async def test_delete_resets_to_defaults(self, make_client):
        admin = make_client("2", "ADMIN")
        await admin.put("/api/permissions/NURSE/OXYGEN", json=ALL_FALSE)

        resp = await admin.delete("/api/permissions/NURSE/OXYGEN")
        assert resp.status_code == 200

        matrix = (await admin.get("/api/permissions/matrix/NURSE")).json()
        oxygen = next(m for m in matrix["modules"] if m["module"] == "OXYGEN")
        assert oxygen["source"] == "default"
        assert oxygen["actions"]["edit"] is True

    async def test_delete_without_row_is_404(self, make_client):
        resp = await make_client("2", "ADMIN").delete("/api/permissions/NURSE/OXYGEN")
        assert resp.status_code == 404

    async def test_writes_notify_sessions_of_affected_role(self, make_client, hub):
        doctor_ws, nurse_ws = FakeWebSocket(), FakeWebSocket()
        hub.register(doctor_ws, "7", "DOCTOR")
        hub.register(nurse_ws, "3", "NURSE")

        admin = make_client("2", "ADMIN")
        await admin.put("/api/permissions/DOCTOR/BILLING", json={**ALL_FALSE, "can_view": True})
        await admin.delete("/api/permissions/DOCTOR/BILLING")

        assert doctor_ws.sent == [
            {"type": "permissions_updated", "role": "DOCTOR", "module": "BILLING"},
            {"type": "permissions_updated", "role": "DOCTOR", "module": "BILLING"},
        ]
        assert nurse_ws.sent == []

    async def test_broadcast_happens_after_commit(self, file_sessions):
        seen = []

        class ReadingHub(NotificationHub):
            """Reads the DOCTOR grant rows from a second session on every broadcast."""

            async def broadcast(self, message, role=None):
                async with file_sessions() as other:
                    grants = await PermissionStore(other).list_grants(Role.DOCTOR)
                seen.append([(g.module, g.allows(Action.VIEW)) for g in grants])
                await super().broadcast(message, role=role)

        previous_hub, app.state.hub = app.state.hub, ReadingHub()
        app.dependency_overrides[get_db] = _committing_db(file_sessions)
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test",
                                   headers=_make_auth_header("2", "ADMIN")) as admin:
                put = await admin.put("/api/permissions/DOCTOR/BILLING",
                                      json={**ALL_FALSE, "can_view": True})
                delete = await admin.delete("/api/permissions/DOCTOR/BILLING")
        finally:
            app.dependency_overrides.clear()
            app.state.hub = previous_hub

        assert put.status_code == delete.status_code == 200
        assert seen == [[(Module.BILLING, True)], []]


@pytest.mark.asyncio
class TestHistory:
    async def test_history_lists_changes_with_chain_status(self, make_client):
        admin = make_client("2", "ADMIN")
        await admin.put("/api/permissions/NURSE/OXYGEN", json={**ALL_FALSE, "can_view": True})
        await admin.delete("/api/permissions/NURSE/OXYGEN")
        await admin.put("/api/permissions/DOCTOR/BILLING", json=ALL_FALSE)

        resp = await admin.get("/api/permissions/history", params={"role": "nurse"})

        assert resp.status_code == 200
        data = resp.json()
        assert [e["event_type"] for e in data["entries"]] == ["permission_reset", "permission_granted"]
        assert all(e["actor"] == "ADMIN:2" for e in data["entries"])
        assert data["chain"]["valid"] is True
        assert data["chain"]["entries_checked"] == 3

    async def test_history_requires_audit_logs_view(self, make_client):
        resp = await make_client("7", "DOCTOR").get("/api/permissions/history")
        assert resp.status_code == 403
