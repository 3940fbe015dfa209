"""
Role definitions — the closed set of identity classes a session can carry.

SUPER_ADMIN is the universal role: it bypasses both explicit grants and the
default table and is allowed everything. Every other role is resolved
through the permission matrix (see ``hms.auth.resolver``).
"""

from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"
    NURSE = "NURSE"
    OPD_MANAGER = "OPD_MANAGER"
    PATIENT = "PATIENT"
    PATHOLOGY_LAB = "PATHOLOGY_LAB"
    MEDICAL_STORE = "MEDICAL_STORE"

    @property
    def label(self) -> str:
        return ROLE_LABELS[self]


SUPER_ROLE = Role.SUPER_ADMIN

ROLE_LABELS: dict[Role, str] = {
    Role.SUPER_ADMIN: "Super Admin",
    Role.ADMIN: "Admin",
    Role.DOCTOR: "Doctor",
    Role.NURSE: "Nurse",
    Role.OPD_MANAGER: "OPD Manager",
    Role.PATIENT: "Patient",
    Role.PATHOLOGY_LAB: "Pathology Lab",
    Role.MEDICAL_STORE: "Medical Store",
}


def parse_role(value) -> Role | None:
    """Return the Role for ``value`` (member or string), or None if unknown."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None
