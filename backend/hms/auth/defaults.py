"""
Compiled-in default permission table.

Used for any (role, module) pair that has no explicit grant row. Anything
absent from this table is denied. SUPER_ADMIN has no entries because the
resolver short-circuits it before the table is consulted.
"""

from hms.auth.permissions import Action, Module
from hms.auth.roles import Role

V = Action.VIEW
C = Action.CREATE
E = Action.EDIT
D = Action.DELETE
AP = Action.APPROVE
X = Action.EXPORT


def _allow(*actions: Action) -> dict[Action, bool]:
    return {a: True for a in actions}


DEFAULT_PERMISSIONS: dict[Role, dict[Module, dict[Action, bool]]] = {
    # ── Admin: runs the hospital, no lock/unlock ──
    Role.ADMIN: {
        Module.DASHBOARD: _allow(V),
        Module.USERS: _allow(V, C, E, D),
        Module.PATIENTS: _allow(V, C, E, D),
        Module.APPOINTMENTS: _allow(V, C, E, D, AP),
        Module.BILLING: _allow(V, C, E),
        Module.STOCK: _allow(V, C, E),
        Module.SURGERY: _allow(V, C, E),
        Module.MEDICINE: _allow(V, C, E),
        Module.INSURANCE: _allow(V, C, E),
        Module.CLAIMS: _allow(V, C, E, AP),
        Module.PACKAGES: _allow(V, C, E),
        Module.REPORTS: _allow(V, X),
        Module.AUDIT_LOGS: _allow(V),
        Module.BED_MANAGEMENT: _allow(V, C, E),
        Module.OPD: _allow(V, C, E),
        Module.IPD: _allow(V, C, E),
        Module.PATHOLOGY: _allow(V),
        Module.PRESCRIPTIONS: _allow(V),
        Module.EQUIPMENT: _allow(V, C, E),
        Module.BMW: _allow(V, C, E),
        Module.OXYGEN: _allow(V, C, E),
        Module.CONSENT_FORMS: _allow(V),
        Module.NOTIFICATIONS: _allow(V, C),
        Module.SETTINGS: _allow(V, E),
    },
    # ── Doctor: clinical records and prescriptions ──
    Role.DOCTOR: {
        Module.DASHBOARD: _allow(V),
        Module.PATIENTS: _allow(V, E),
        Module.APPOINTMENTS: _allow(V, E),
        Module.PRESCRIPTIONS: _allow(V, C, E, AP),
        Module.OPD: _allow(V),
        Module.IPD: _allow(V),
        Module.PATHOLOGY: _allow(V),
        Module.CONSENT_FORMS: _allow(V),
        Module.NOTIFICATIONS: _allow(V),
    },
    # ── Nurse: ward operations ──
    Role.NURSE: {
        Module.DASHBOARD: _allow(V),
        Module.PATIENTS: _allow(V, E),
        Module.APPOINTMENTS: _allow(V),
        Module.PRESCRIPTIONS: _allow(V),
        Module.BED_MANAGEMENT: _allow(V, E),
        Module.OPD: _allow(V),
        Module.IPD: _allow(V),
        Module.OXYGEN: _allow(V, E),
        Module.CONSENT_FORMS: _allow(V),
        Module.NOTIFICATIONS: _allow(V),
    },
    # ── OPD manager: front desk, appointments and OPD billing ──
    Role.OPD_MANAGER: {
        Module.DASHBOARD: _allow(V),
        Module.PATIENTS: _allow(V, C, E),
        Module.APPOINTMENTS: _allow(V, C, E, D),
        Module.BILLING: _allow(V, C),
        Module.OPD: _allow(V, C, E),
        Module.CONSENT_FORMS: _allow(V),
        Module.NOTIFICATIONS: _allow(V, C),
    },
    # ── Patient: read-only views of their own data ──
    Role.PATIENT: {
        Module.DASHBOARD: _allow(V),
        Module.APPOINTMENTS: _allow(V),
        Module.PRESCRIPTIONS: _allow(V),
        Module.BILLING: _allow(V),
        Module.NOTIFICATIONS: _allow(V),
    },
    Role.PATHOLOGY_LAB: {
        Module.DASHBOARD: _allow(V),
        Module.PATIENTS: _allow(V),
        Module.PATHOLOGY: _allow(V, C, E, AP),
        Module.REPORTS: _allow(V, X),
        Module.NOTIFICATIONS: _allow(V),
    },
    Role.MEDICAL_STORE: {
        Module.DASHBOARD: _allow(V),
        Module.PRESCRIPTIONS: _allow(V),
        Module.MEDICINE: _allow(V, E),
        Module.STOCK: _allow(V, C, E),
        Module.BILLING: _allow(V, C),
        Module.NOTIFICATIONS: _allow(V),
    },
}


def default_permissions_for(role: Role, module: Module) -> dict[Action, bool]:
    """Default flags for (role, module); missing actions mean denied."""
    return dict(DEFAULT_PERMISSIONS.get(role, {}).get(module, {}))
