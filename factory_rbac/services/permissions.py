"""Permission matrix types and the action-level authorization decision.

Everything in this module is pure: no database access, no logging, no
caching. `decide` is the single place that turns (principal, role,
resource, action) into allow/deny, so it can be tested exhaustively
against the full resource x action x role cross product.

Data reach is a separate axis; see `factory_rbac.services.data_reach`.
"""

import enum
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from factory_rbac.core.exceptions import (
    AuthorizationError,
    InvalidPermissionCombinationError,
    InvalidReachError,
    InvalidResourceError,
)
from factory_rbac.models.role import DataReachEnum
from factory_rbac.models.user import UserStatusEnum

ADMIN_ROLE = "admin"


class Resource(str, enum.Enum):
    """Named categories of data subject to permission."""
    users = "Users"
    departments = "Departments"
    groups = "Groups"
    products = "Products"
    reports = "Reports"
    analytics = "Analytics"
    tasks = "Tasks"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return None


class Action(str, enum.Enum):
    view = "view"
    edit = "edit"


@dataclass(frozen=True)
class PermissionFlags:
    can_view: bool = False
    can_edit: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"can_view": self.can_view, "can_edit": self.can_edit}


NO_ACCESS = PermissionFlags()
FULL_ACCESS = PermissionFlags(can_view=True, can_edit=True)


@dataclass(frozen=True)
class RoleDefinition:
    """Immutable snapshot of a persisted role.

    Snapshots are what the role cache hands out, so a reader always sees
    one consistent matrix, never a mix of two writes.
    """
    name: str
    display_name: str
    permissions: Mapping[Resource, PermissionFlags]
    data_reach: DataReachEnum
    is_built_in: bool = False
    version: int = 1

    def __post_init__(self):
        object.__setattr__(self, "permissions", MappingProxyType(dict(self.permissions)))

    @property
    def is_admin(self) -> bool:
        return self.name == ADMIN_ROLE

    def flags_for(self, resource: Resource) -> Optional[PermissionFlags]:
        return self.permissions.get(resource)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "permissions": {r.value: f.to_dict() for r, f in self.permissions.items()},
            "data_reach": self.data_reach.value,
            "is_built_in": self.is_built_in,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RoleDefinition":
        return cls(
            name=data["name"],
            display_name=data["display_name"],
            permissions=parse_matrix(data.get("permissions") or {}),
            data_reach=DataReachEnum(data["data_reach"]),
            is_built_in=bool(data.get("is_built_in", False)),
            version=int(data.get("version", 1)),
        )

    @classmethod
    def from_model(cls, role) -> "RoleDefinition":
        return cls(
            name=role.name,
            display_name=role.display_name,
            permissions=parse_matrix(role.permissions_json or "{}"),
            data_reach=DataReachEnum(role.data_reach),
            is_built_in=bool(role.is_built_in),
            version=role.version or 1,
        )


@dataclass(frozen=True)
class Principal:
    """The identity an authorization check is made for.

    Built fresh from the user row on every request; never cached.
    """
    id: int
    status: UserStatusEnum
    role_name: Optional[str] = None
    department_id: Optional[int] = None
    group_id: Optional[int] = None
    username: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatusEnum.active

    @property
    def is_admin(self) -> bool:
        return self.is_active and self.role_name == ADMIN_ROLE

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(
            id=user.id,
            status=UserStatusEnum(user.status),
            role_name=user.role_name,
            department_id=user.department_id,
            group_id=user.group_id,
            username=user.username,
        )


@dataclass(frozen=True)
class AuthorizationDecision:
    resource: Union[Resource, str, None]
    action: Optional[Action]
    allowed: bool
    reach: Optional[DataReachEnum] = None
    integrity_error: bool = False
    reason: str = field(default="", compare=False)


# ---- Matrix parsing / validation ----

def _flag_value(entry: Any, key: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(key, False)
    return getattr(entry, key, False)


def validate_matrix(permissions: Mapping[Any, Any]) -> Dict[Resource, PermissionFlags]:
    """Validate a caller-supplied matrix before it is persisted.

    Raises:
        InvalidResourceError: unknown resource name.
        InvalidPermissionCombinationError: an entry grants edit without view.
    """
    matrix: Dict[Resource, PermissionFlags] = {}
    for key, entry in (permissions or {}).items():
        try:
            resource = Resource(key)
        except ValueError:
            raise InvalidResourceError(f"Unknown resource '{key}'")
        can_view = _flag_value(entry, "can_view")
        can_edit = _flag_value(entry, "can_edit")
        if not isinstance(can_view, bool) or not isinstance(can_edit, bool):
            raise InvalidPermissionCombinationError(
                f"Permission flags for {resource.value} must be booleans"
            )
        if can_edit and not can_view:
            raise InvalidPermissionCombinationError(
                f"{resource.value}: edit permission requires view permission"
            )
        matrix[resource] = PermissionFlags(can_view=can_view, can_edit=can_edit)
    return matrix


def parse_matrix(raw: Union[str, Mapping[str, Any]]) -> Dict[Resource, PermissionFlags]:
    """Decode a stored matrix, failing closed on anything malformed.

    Unknown resources are dropped and an entry that grants edit without view
    collapses to no access.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    if not isinstance(raw, Mapping):
        return {}

    matrix: Dict[Resource, PermissionFlags] = {}
    for key, entry in raw.items():
        try:
            resource = Resource(key)
        except ValueError:
            continue
        can_view = _flag_value(entry, "can_view") is True
        can_edit = _flag_value(entry, "can_edit") is True
        if can_edit and not can_view:
            matrix[resource] = NO_ACCESS
            continue
        matrix[resource] = PermissionFlags(can_view=can_view, can_edit=can_edit)
    return matrix


def serialize_matrix(matrix: Mapping[Resource, PermissionFlags]) -> str:
    return json.dumps(
        {resource.value: flags.to_dict() for resource, flags in matrix.items()},
        sort_keys=True,
    )


def coerce_reach(value: Union[str, DataReachEnum, None]) -> DataReachEnum:
    if isinstance(value, DataReachEnum):
        return value
    try:
        return DataReachEnum(value)
    except ValueError:
        raise InvalidReachError(
            f"Invalid data reach '{value}'. Must be one of: own, department, group, all"
        )


# ---- Decisions ----

def _coerce(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def effective_reach(principal: Principal, role: Optional[RoleDefinition]) -> Optional[DataReachEnum]:
    """Resolve the data reach a principal actually gets.

    `None` means no rows at all.
    """
    if not principal.is_active:
        return None
    if principal.role_name == ADMIN_ROLE:
        return DataReachEnum.all
    if role is None or role.name != principal.role_name:
        return None
    return role.data_reach


def decide(
    principal: Principal,
    role: Optional[RoleDefinition],
    resource: Union[Resource, str],
    action: Union[Action, str],
) -> AuthorizationDecision:
    """Decide whether `principal` may perform `action` on `resource`.

    `role` is the definition loaded for `principal.role_name`, or None when
    no such role exists. Admin is allowed every resource, including names
    no role's matrix knows about; an unknown action is denied for everyone.
    """
    action = _coerce(Action, action)
    known_resource = _coerce(Resource, resource)
    if known_resource is not None:
        resource = known_resource
    if action is None:
        return AuthorizationDecision(resource, action, False, reason="unknown action")

    if not principal.is_active:
        return AuthorizationDecision(resource, action, False, reason=f"user is {principal.status.value}")

    if principal.role_name == ADMIN_ROLE:
        return AuthorizationDecision(resource, action, True, reach=DataReachEnum.all, reason="admin")

    if known_resource is None:
        return AuthorizationDecision(resource, action, False, reason="unknown resource")

    if role is None or role.name != principal.role_name:
        return AuthorizationDecision(
            resource, action, False,
            integrity_error=True,
            reason=f"role '{principal.role_name}' does not exist",
        )

    flags = role.flags_for(resource)
    if flags is None:
        return AuthorizationDecision(resource, action, False, reason="resource not in matrix")

    allowed = flags.can_view if action == Action.view else flags.can_edit
    return AuthorizationDecision(
        resource, action, allowed,
        reach=role.data_reach if allowed else None,
        reason="matrix",
    )


def can_perform(
    principal: Principal,
    role: Optional[RoleDefinition],
    resource: Union[Resource, str],
    action: Union[Action, str],
) -> bool:
    return decide(principal, role, resource, action).allowed


def effective_matrix(principal: Principal, role: Optional[RoleDefinition]) -> Dict[Resource, PermissionFlags]:
    """Full resource -> flags view for a principal, as clients render it."""
    return {
        resource: PermissionFlags(
            can_view=can_perform(principal, role, resource, Action.view),
            can_edit=can_perform(principal, role, resource, Action.edit),
        )
        for resource in Resource
    }


def ensure_admin(actor: Optional[Principal]) -> None:
    """Reject non-admin actors. `None` is a system actor (CLI, seeds)."""
    if actor is not None and not actor.is_admin:
        raise AuthorizationError("Admin privileges required")
