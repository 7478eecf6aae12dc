"""Data-reach filter: which rows of a resource a principal may see.

Applied only after the action check (`decide(..., Action.view)`) has passed;
it narrows results, it never grants access on its own.

Both entry points go through `resolve_scope`, so a listing filtered with
`scope_query` and a single record checked with `scope_check` always agree.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import false

from factory_rbac.models.role import DataReachEnum
from factory_rbac.services.permissions import Principal


@dataclass(frozen=True)
class ScopeFields:
    """Attribute names a resource uses for ownership and placement.

    A field set to None means the resource has no such column; reach levels
    that need it degrade to `own`.
    """
    owner: Optional[str] = "owner_id"
    department: Optional[str] = "department_id"
    group: Optional[str] = "group_id"


DEFAULT_FIELDS = ScopeFields()


@dataclass(frozen=True)
class Scope:
    """Resolved restriction: everything, nothing, or `field == value`."""
    kind: str  # "all" | "none" | "match"
    field: Optional[str] = None
    value: Any = None

    @classmethod
    def everything(cls) -> "Scope":
        return cls("all")

    @classmethod
    def nothing(cls) -> "Scope":
        return cls("none")


def resolve_scope(
    principal: Principal,
    reach: Optional[DataReachEnum],
    fields: ScopeFields = DEFAULT_FIELDS,
) -> Scope:
    if reach is None or not principal.is_active:
        return Scope.nothing()

    if reach == DataReachEnum.all:
        return Scope.everything()

    # A principal without a department (or group) only ever sees their own
    # rows, never every other row whose column is also null.
    if reach == DataReachEnum.department and fields.department and principal.department_id is not None:
        return Scope("match", fields.department, principal.department_id)

    if reach == DataReachEnum.group and fields.group and principal.group_id is not None:
        return Scope("match", fields.group, principal.group_id)

    if fields.owner and principal.id is not None:
        return Scope("match", fields.owner, principal.id)

    return Scope.nothing()


def _record_value(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def scope_check(
    principal: Principal,
    reach: Optional[DataReachEnum],
    record: Any,
    fields: ScopeFields = DEFAULT_FIELDS,
) -> bool:
    """Return True if `record` falls inside the principal's reach."""
    scope = resolve_scope(principal, reach, fields)
    if scope.kind == "all":
        return True
    if scope.kind == "none" or record is None:
        return False
    value = _record_value(record, scope.field)
    return value is not None and value == scope.value


def scope_query(
    principal: Principal,
    reach: Optional[DataReachEnum],
    query,
    model,
    fields: ScopeFields = DEFAULT_FIELDS,
):
    """Narrow a `Query` or `Select` over `model` to the principal's reach."""
    scope = resolve_scope(principal, reach, fields)
    if scope.kind == "all":
        return query
    if scope.kind == "none":
        return query.where(false())
    column = getattr(model, scope.field, None)
    if column is None:
        return query.where(false())
    return query.where(column == scope.value)
