from hms.models.user import User  # noqa: F401
from hms.models.permission import RolePermission  # noqa: F401
from hms.models.notification import UserNotification  # noqa: F401
from hms.models.audit import AuditLog  # noqa: F401
