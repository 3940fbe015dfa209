"""
Modules, actions and grant rows — the vocabulary of the permission matrix.

A permission is always the triple (role, module, action). Modules are the
functional areas of the hospital system, actions are the operations that
can be performed inside one. A PermissionGrant is an explicit, persisted
override for one (role, module) pair carrying one boolean per action.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Iterable, Mapping

from hms.auth.roles import Role, parse_role


class Module(str, Enum):
    DASHBOARD = "DASHBOARD"
    USERS = "USERS"
    PATIENTS = "PATIENTS"
    APPOINTMENTS = "APPOINTMENTS"
    BILLING = "BILLING"
    STOCK = "STOCK"
    SURGERY = "SURGERY"
    MEDICINE = "MEDICINE"
    INSURANCE = "INSURANCE"
    CLAIMS = "CLAIMS"
    PACKAGES = "PACKAGES"
    REPORTS = "REPORTS"
    AUDIT_LOGS = "AUDIT_LOGS"
    BED_MANAGEMENT = "BED_MANAGEMENT"
    OPD = "OPD"
    IPD = "IPD"
    PATHOLOGY = "PATHOLOGY"
    PRESCRIPTIONS = "PRESCRIPTIONS"
    EQUIPMENT = "EQUIPMENT"
    BMW = "BMW"                      # biomedical waste
    OXYGEN = "OXYGEN"
    CONSENT_FORMS = "CONSENT_FORMS"
    NOTIFICATIONS = "NOTIFICATIONS"
    SETTINGS = "SETTINGS"

    @property
    def label(self) -> str:
        return MODULE_LABELS[self]


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"
    LOCK = "lock"
    UNLOCK = "unlock"
    EXPORT = "export"

    @property
    def field(self) -> str:
        """Name of the grant-row column holding this action's flag."""
        return f"can_{self.value}"

    @property
    def label(self) -> str:
        return self.value.capitalize()


MODULE_LABELS: dict[Module, str] = {
    Module.DASHBOARD: "Dashboard",
    Module.USERS: "User Management",
    Module.PATIENTS: "Patient Records",
    Module.APPOINTMENTS: "Appointments",
    Module.BILLING: "Billing & Invoices",
    Module.STOCK: "Stock & Inventory",
    Module.SURGERY: "Surgery Packages",
    Module.MEDICINE: "Medicine Database",
    Module.INSURANCE: "Insurance Providers",
    Module.CLAIMS: "Insurance Claims",
    Module.PACKAGES: "Hospital Packages",
    Module.REPORTS: "Reports & Analytics",
    Module.AUDIT_LOGS: "Audit Logs",
    Module.BED_MANAGEMENT: "Bed Management",
    Module.OPD: "OPD Services",
    Module.IPD: "IPD Services",
    Module.PATHOLOGY: "Pathology Lab",
    Module.PRESCRIPTIONS: "Prescriptions",
    Module.EQUIPMENT: "Equipment Servicing",
    Module.BMW: "Biomedical Waste",
    Module.OXYGEN: "Oxygen Tracking",
    Module.CONSENT_FORMS: "Consent Forms",
    Module.NOTIFICATIONS: "Notifications",
    Module.SETTINGS: "System Settings",
}


def parse_module(value) -> Module | None:
    if isinstance(value, Module):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Module(value.strip().upper())
    except ValueError:
        return None


def parse_action(value) -> Action | None:
    if isinstance(value, Action):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Action(value.strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class PermissionGrant:
    """Explicit override of the default permissions for one (role, module)."""

    role: Role
    module: Module
    can_view: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False
    can_approve: bool = False
    can_lock: bool = False
    can_unlock: bool = False
    can_export: bool = False

    def allows(self, action) -> bool:
        """Flag for ``action``; unknown actions are never allowed."""
        parsed = parse_action(action)
        if parsed is None:
            return False
        return bool(getattr(self, parsed.field, False))

    def actions(self) -> dict[Action, bool]:
        return {a: bool(getattr(self, a.field)) for a in Action}

    @classmethod
    def from_actions(cls, role: Role, module: Module,
                     actions: Mapping[Action, bool]) -> PermissionGrant:
        flags = {a.field: bool(actions.get(a, False)) for a in Action}
        return cls(role=role, module=module, **flags)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PermissionGrant | None:
        """
        Build a grant from a wire/ORM dict.

        Returns None when the role or module is not part of the closed sets,
        so callers can drop rows they cannot interpret instead of failing.
        """
        role = parse_role(data.get("role"))
        module = parse_module(data.get("module"))
        if role is None or module is None:
            return None
        flags = {a.field: bool(data.get(a.field) or False) for a in Action}
        return cls(role=role, module=module, **flags)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"role": self.role.value, "module": self.module.value}
        for f in fields(self):
            if f.name.startswith("can_"):
                out[f.name] = getattr(self, f.name)
        return out


GrantIndex = Mapping[tuple[Role, Module], PermissionGrant]


def index_grants(grants: Iterable[PermissionGrant]) -> dict[tuple[Role, Module], PermissionGrant]:
    """Key grant rows by (role, module) for constant-time lookup."""
    return {(g.role, g.module): g for g in grants}
