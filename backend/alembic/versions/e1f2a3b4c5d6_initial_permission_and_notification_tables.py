"""Initial permission matrix, notification, user and audit tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 12:00:00.000000

Creates role_permissions (explicit grant rows, one per role/module),
user_notifications, users and the hash-chained audit_log, and seeds one
demo account per role with bcrypt-hashed passwords.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "e1f2a3b4c5d6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIONS = ("view", "create", "edit", "delete", "approve", "lock", "unlock", "export")


def upgrade() -> None:
    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role", sa.String(30), nullable=False),
        sa.Column("module", sa.String(40), nullable=False),
        *[sa.Column(f"can_{a}", sa.Boolean(), nullable=False, server_default=sa.false())
          for a in ACTIONS],
        sa.Column("updated_by", sa.String(100), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("role", "module", name="uq_role_permissions_role_module"),
    )
    op.create_index("ix_role_permissions_role", "role_permissions", ["role"])

    op.create_table(
        "user_notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("user_role", sa.String(30), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_entity_type", sa.String(30), nullable=True),
        sa.Column("related_entity_id", sa.String(64), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_user_notifications_user_id", "user_notifications", ["user_id"])
    op.create_index("ix_user_notifications_user_role", "user_notifications", ["user_role"])
    op.create_index("ix_user_notifications_created_at", "user_notifications", ["created_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("action", sa.String(500), nullable=False),
        sa.Column("resource_type", sa.String(30), nullable=True),
        sa.Column("resource_id", sa.String(80), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("current_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_log_event_id", "audit_log", ["event_id"], unique=True)
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(30), nullable=False, server_default="PATIENT"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Demo accounts, one per role. Password is "<Label>123!" without spaces, e.g. "Doctor123!"
    from passlib.context import CryptContext
    ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

    users = [
        ("superadmin@hospital.test", "SuperAdmin123!", "Super Admin", "SUPER_ADMIN"),
        ("admin@hospital.test", "Admin123!", "Hospital Admin", "ADMIN"),
        ("doctor@hospital.test", "Doctor123!", "Duty Doctor", "DOCTOR"),
        ("nurse@hospital.test", "Nurse123!", "Ward Nurse", "NURSE"),
        ("opd@hospital.test", "OpdManager123!", "OPD Manager", "OPD_MANAGER"),
        ("patient@hospital.test", "Patient123!", "Demo Patient", "PATIENT"),
        ("lab@hospital.test", "PathologyLab123!", "Pathology Lab", "PATHOLOGY_LAB"),
        ("store@hospital.test", "MedicalStore123!", "Medical Store", "MEDICAL_STORE"),
    ]

    users_table = sa.table(
        "users",
        sa.column("email", sa.String),
        sa.column("password_hash", sa.String),
        sa.column("full_name", sa.String),
        sa.column("role", sa.String),
    )
    op.bulk_insert(users_table, [
        {"email": e, "password_hash": ctx.hash(p), "full_name": n, "role": r}
        for e, p, n, r in users
    ])


def downgrade() -> None:
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_audit_log_created_at", table_name="audit_log")
    op.drop_index("ix_audit_log_event_type", table_name="audit_log")
    op.drop_index("ix_audit_log_event_id", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_user_notifications_created_at", table_name="user_notifications")
    op.drop_index("ix_user_notifications_user_role", table_name="user_notifications")
    op.drop_index("ix_user_notifications_user_id", table_name="user_notifications")
    op.drop_table("user_notifications")
    op.drop_index("ix_role_permissions_role", table_name="role_permissions")
    op.drop_table("role_permissions")
