"""Tests for permission resolution: grants override defaults, defaults, deny."""

import pytest

from hms.auth.defaults import DEFAULT_PERMISSIONS
from hms.auth.permissions import Action, Module, PermissionGrant, index_grants
from hms.auth.resolver import (
    PermissionSource,
    can_all,
    can_any,
    effective_matrix,
    effective_permissions,
    permission_source,
    resolve,
)
from hms.auth.roles import SUPER_ROLE, Role

NON_SUPER_ROLES = [r for r in Role if r is not SUPER_ROLE]


def _grant(role: Role, module: Module, *allowed: Action) -> PermissionGrant:
    return PermissionGrant.from_actions(role, module, {a: True for a in allowed})


# ── Scenarios ────────────────────────────────────────────────────────────────

class TestScenarios:
    def test_doctor_patients_grant_row_overrides_defaults(self):
        grants = index_grants([_grant(Role.DOCTOR, Module.PATIENTS, Action.VIEW, Action.EDIT)])
        assert resolve(Role.DOCTOR, Module.PATIENTS, "delete", grants) is False
        assert resolve(Role.DOCTOR, Module.PATIENTS, "view", grants) is True

    def test_nurse_oxygen_falls_back_to_default_table(self):
        assert resolve(Role.NURSE, Module.OXYGEN, "edit", {}) is True
        assert resolve(Role.NURSE, Module.OXYGEN, "delete", {}) is False

    def test_grant_can_revoke_a_default(self):
        # ADMIN may edit USERS by default; an all-false row removes it
        grants = index_grants([_grant(Role.ADMIN, Module.USERS)])
        assert resolve(Role.ADMIN, Module.USERS, Action.EDIT) is True
        assert resolve(Role.ADMIN, Module.USERS, Action.EDIT, grants) is False

    def test_grant_can_add_beyond_defaults(self):
        grants = index_grants([_grant(Role.PATIENT, Module.REPORTS, Action.EXPORT)])
        assert resolve(Role.PATIENT, Module.REPORTS, Action.EXPORT) is False
        assert resolve(Role.PATIENT, Module.REPORTS, Action.EXPORT, grants) is True

    def test_grant_for_other_role_is_ignored(self):
        grants = index_grants([_grant(Role.DOCTOR, Module.OXYGEN, Action.DELETE)])
        assert resolve(Role.NURSE, Module.OXYGEN, Action.DELETE, grants) is False


# ── Properties over the whole matrix ─────────────────────────────────────────

class TestProperties:
    def test_super_admin_allowed_everything(self):
        deny_all = index_grants(_grant(SUPER_ROLE, m) for m in Module)
        for module in Module:
            for action in Action:
                assert resolve(SUPER_ROLE, module, action) is True
                assert resolve(SUPER_ROLE, module, action, deny_all) is True

    @pytest.mark.parametrize("role", NON_SUPER_ROLES)
    def test_grant_row_decides_every_action(self, role):
        # alternate true/false so each row differs from any default
        pattern = {a: i % 2 == 0 for i, a in enumerate(Action)}
        grants = index_grants(PermissionGrant.from_actions(role, m, pattern) for m in Module)
        for module in Module:
            for action in Action:
                assert resolve(role, module, action, grants) is pattern[action]

    @pytest.mark.parametrize("role", NON_SUPER_ROLES)
    def test_without_grants_defaults_apply_else_deny(self, role):
        for module in Module:
            for action in Action:
                expected = DEFAULT_PERMISSIONS.get(role, {}).get(module, {}).get(action, False)
                assert resolve(role, module, action, {}) is expected

    def test_effective_matrix_covers_every_cell(self):
        matrix = effective_matrix(Role.DOCTOR)
        assert set(matrix) == set(Module)
        assert all(set(flags) == set(Action) for flags in matrix.values())
        assert matrix[Module.PRESCRIPTIONS][Action.APPROVE] is True
        assert matrix[Module.BILLING][Action.VIEW] is False


# ── Fail closed ──────────────────────────────────────────────────────────────

class TestUnknownInputs:
    @pytest.mark.parametrize("role,module,action", [
        ("JANITOR", "PATIENTS", "view"),
        ("DOCTOR", "CAFETERIA", "view"),
        ("DOCTOR", "PATIENTS", "teleport"),
        (None, "PATIENTS", "view"),
        ("DOCTOR", None, "view"),
        ("DOCTOR", "PATIENTS", None),
        (42, "PATIENTS", "view"),
    ])
    def test_unknown_values_resolve_to_false(self, role, module, action):
        assert resolve(role, module, action) is False

    def test_unknown_role_is_denied_even_with_super_like_spelling(self):
        assert resolve("SUPERADMIN", Module.SETTINGS, Action.VIEW) is False

    def test_string_inputs_are_case_insensitive(self):
        assert resolve("nurse", "oxygen", "EDIT") is True
        assert resolve("super_admin", "settings", "lock") is True

    def test_grant_allows_unknown_action_is_false(self):
        grant = _grant(Role.DOCTOR, Module.PATIENTS, *Action)
        assert grant.allows("teleport") is False


# ── Helpers ──────────────────────────────────────────────────────────────────

class TestHelpers:
    def test_can_any_and_can_all(self):
        assert can_any(Role.NURSE, Module.OXYGEN, [Action.DELETE, Action.EDIT]) is True
        assert can_all(Role.NURSE, Module.OXYGEN, [Action.DELETE, Action.EDIT]) is False
        assert can_any(Role.NURSE, Module.OXYGEN, []) is False
        assert can_all(Role.NURSE, Module.OXYGEN, []) is True

    def test_effective_permissions_has_all_actions(self):
        flags = effective_permissions(Role.NURSE, Module.OXYGEN)
        assert flags[Action.VIEW] and flags[Action.EDIT]
        assert not any(flags[a] for a in Action if a not in (Action.VIEW, Action.EDIT))

    def test_permission_source_tiers(self):
        grants = index_grants([_grant(Role.DOCTOR, Module.PATIENTS, Action.VIEW)])
        assert permission_source(SUPER_ROLE, Module.PATIENTS) is PermissionSource.SUPER
        assert permission_source(Role.DOCTOR, Module.PATIENTS, grants) is PermissionSource.GRANT
        assert permission_source(Role.DOCTOR, Module.PRESCRIPTIONS, grants) is PermissionSource.DEFAULT
        assert permission_source(Role.DOCTOR, Module.BILLING, grants) is PermissionSource.NONE
        assert permission_source("JANITOR", Module.BILLING) is PermissionSource.NONE


class TestPermissionGrant:
    def test_from_dict_rejects_unknown_role_or_module(self):
        assert PermissionGrant.from_dict({"role": "JANITOR", "module": "PATIENTS"}) is None
        assert PermissionGrant.from_dict({"role": "DOCTOR", "module": "CAFETERIA"}) is None

    def test_from_dict_missing_flags_default_false(self):
        grant = PermissionGrant.from_dict({"role": "doctor", "module": "patients", "can_view": True})
        assert grant.role is Role.DOCTOR
        assert grant.module is Module.PATIENTS
        assert grant.actions() == {a: a is Action.VIEW for a in Action}

    def test_to_dict_uses_wire_names(self):
        data = _grant(Role.NURSE, Module.OXYGEN, Action.LOCK).to_dict()
        assert data["role"] == "NURSE"
        assert data["module"] == "OXYGEN"
        assert data["can_lock"] is True
        assert data["can_unlock"] is False
        assert len([k for k in data if k.startswith("can_")]) == 8
