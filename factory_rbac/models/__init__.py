"""Models package — import all models so metadata.create_all can discover them."""

from factory_rbac.models.role import Role, DataReachEnum
from factory_rbac.models.organization import Department, Group
from factory_rbac.models.user import User, UserStatusEnum
from factory_rbac.models.registration_code import RegistrationCode
from factory_rbac.models.audit_log import AuditLog

__all__ = [
    "Role", "DataReachEnum",
    "Department", "Group",
    "User", "UserStatusEnum",
    "RegistrationCode", "AuditLog",
]
