from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from hms.auth.permissions import PermissionGrant
from hms.database import Base


class RolePermission(Base):
    """Explicit grant row. At most one per (role, module)."""

    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role", "module", name="uq_role_permissions_role_module"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    role: Mapped[str] = mapped_column(String(30), index=True)
    module: Mapped[str] = mapped_column(String(40))
    can_view: Mapped[bool] = mapped_column(Boolean, default=False)
    can_create: Mapped[bool] = mapped_column(Boolean, default=False)
    can_edit: Mapped[bool] = mapped_column(Boolean, default=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    can_approve: Mapped[bool] = mapped_column(Boolean, default=False)
    can_lock: Mapped[bool] = mapped_column(Boolean, default=False)
    can_unlock: Mapped[bool] = mapped_column(Boolean, default=False)
    can_export: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    def to_grant(self) -> PermissionGrant | None:
        return PermissionGrant.from_dict({
            "role": self.role,
            "module": self.module,
            "can_view": self.can_view,
            "can_create": self.can_create,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
            "can_approve": self.can_approve,
            "can_lock": self.can_lock,
            "can_unlock": self.can_unlock,
            "can_export": self.can_export,
        })
