"""Role mutation service — create, rename, re-permission and delete roles.

Owns validation, transactions, audit entries and cache invalidation so the
registry below it can stay a plain store. Affected cache entries are
invalidated before commit and again after commit, before returning.
"""

import logging
import re
from typing import Any, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from factory_rbac.core.exceptions import (
    ConcurrentUpdateError,
    DuplicateRoleError,
    ImmutableRoleError,
    InvalidRoleNameError,
    RoleInUseError,
    RoleNotFoundError,
)
from factory_rbac.db.session import atomic
from factory_rbac.models.role import DataReachEnum, Role
from factory_rbac.services.audit_service import audit_service
from factory_rbac.services.permissions import (
    ADMIN_ROLE,
    Principal,
    RoleDefinition,
    coerce_reach,
    ensure_admin,
    serialize_matrix,
    validate_matrix,
)
from factory_rbac.services.role_registry import RoleRegistry, role_registry

logger = logging.getLogger("factory_rbac")

ROLE_NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
ROLE_NAME_MAX_LENGTH = 50


def validate_role_name(name: Any) -> str:
    if not isinstance(name, str) or not name or len(name) > ROLE_NAME_MAX_LENGTH:
        raise InvalidRoleNameError(
            f"Role name must be 1-{ROLE_NAME_MAX_LENGTH} characters"
        )
    if not ROLE_NAME_PATTERN.match(name):
        raise InvalidRoleNameError(
            "Role name can only contain lowercase letters, numbers, and underscores"
        )
    return name


class RoleService:
    """Orchestrates role mutations on top of a `RoleRegistry`."""

    def __init__(self, registry: RoleRegistry):
        self.registry = registry

    def get_role(self, db: Session, name: str) -> RoleDefinition:
        return self.registry.get_role(db, name)

    def list_roles(self, db: Session) -> List[RoleDefinition]:
        return self.registry.list_roles(db)

    def create_role(
        self,
        db: Session,
        name: str,
        display_name: Optional[str],
        permissions: Mapping[Any, Any],
        data_reach: Any,
        actor: Optional[Principal] = None,
        request=None,
    ) -> RoleDefinition:
        """Create a role.

        Raises:
            InvalidRoleNameError, InvalidReachError, InvalidResourceError,
            InvalidPermissionCombinationError, ImmutableRoleError (reserved
            name), DuplicateRoleError.
        """
        ensure_admin(actor)
        validate_role_name(name)
        if name == ADMIN_ROLE:
            raise ImmutableRoleError("The admin role is built in and cannot be created")
        reach = coerce_reach(data_reach)
        matrix = validate_matrix(permissions)
        label = (display_name or "").strip() or name

        try:
            with atomic(db):
                if self.registry.exists(db, name):
                    raise DuplicateRoleError(f"Role '{name}' already exists")
                row = self.registry.add(db, Role(
                    name=name,
                    display_name=label,
                    permissions_json=serialize_matrix(matrix),
                    data_reach=reach,
                    is_built_in=False,
                ))
                created = RoleDefinition.from_model(row)
                audit_service.record(
                    db, actor, "role.created", "role", name,
                    new_value=created.to_dict(), request=request,
                )
                self.registry.invalidate(name)
        except IntegrityError:
            raise DuplicateRoleError(f"Role '{name}' already exists")

        self.registry.invalidate(name)
        logger.info("Role '%s' created (reach=%s)", name, reach.value)
        return created

    def update_permissions(
        self,
        db: Session,
        name: str,
        permissions: Mapping[Any, Any],
        data_reach: Any,
        expected_version: Optional[int] = None,
        actor: Optional[Principal] = None,
        request=None,
    ) -> RoleDefinition:
        """Replace a role's matrix and data reach in one write.

        Raises:
            RoleNotFoundError, ImmutableRoleError, InvalidReachError,
            InvalidResourceError, InvalidPermissionCombinationError,
            ConcurrentUpdateError (stale `expected_version` or a concurrent
            writer got there first).
        """
        ensure_admin(actor)
        if name == ADMIN_ROLE:
            raise ImmutableRoleError("The admin role's permissions cannot be edited")
        reach = coerce_reach(data_reach)
        matrix = validate_matrix(permissions)

        try:
            with atomic(db):
                row = self.registry.get_row(db, name, lock=True)
                if row is None:
                    raise RoleNotFoundError(f"Role '{name}' not found")
                if row.is_built_in:
                    raise ImmutableRoleError(f"Role '{name}' is built in")
                if expected_version is not None and row.version != expected_version:
                    raise ConcurrentUpdateError(
                        f"Role '{name}' was modified by someone else "
                        f"(version {row.version}, expected {expected_version})"
                    )
                before = RoleDefinition.from_model(row).to_dict()
                row.permissions_json = serialize_matrix(matrix)
                row.data_reach = reach
                db.flush()
                updated = RoleDefinition.from_model(row)
                audit_service.record(
                    db, actor, "role.permissions_updated", "role", name,
                    old_value=before, new_value=updated.to_dict(), request=request,
                )
                self.registry.invalidate(name)
        except StaleDataError:
            raise ConcurrentUpdateError(f"Role '{name}' was modified concurrently")

        self.registry.invalidate(name)
        logger.info("Role '%s' permissions updated (version %s)", name, updated.version)
        return updated

    def rename_role(
        self,
        db: Session,
        old_name: str,
        new_name: str,
        new_display_name: Optional[str] = None,
        actor: Optional[Principal] = None,
        request=None,
    ) -> RoleDefinition:
        """Rename a role and move every user holding it, in one transaction.

        `new_name == old_name` only relabels the role.

        Raises:
            ImmutableRoleError, RoleNotFoundError, InvalidRoleNameError,
            DuplicateRoleError, ConcurrentUpdateError.
        """
        ensure_admin(actor)
        if old_name == ADMIN_ROLE:
            raise ImmutableRoleError("The admin role cannot be renamed")
        validate_role_name(new_name)
        label = (new_display_name or "").strip() or None

        try:
            with atomic(db):
                row = self.registry.get_row(db, old_name, lock=True)
                if row is None:
                    raise RoleNotFoundError(f"Role '{old_name}' not found")
                if row.is_built_in:
                    raise ImmutableRoleError(f"Role '{old_name}' is built in")

                moved = 0
                if new_name != old_name:
                    if new_name == ADMIN_ROLE or self.registry.exists(db, new_name):
                        raise DuplicateRoleError(f"Role '{new_name}' already exists")
                    moved = self.registry.count_users(db, old_name)
                    row.name = new_name
                    if label is None and row.display_name == old_name:
                        row.display_name = new_name
                    # Role row first so the users' foreign key has a target.
                    db.flush()
                    self.registry.reassign_users(db, old_name, new_name)
                if label is not None:
                    row.display_name = label
                db.flush()

                renamed = RoleDefinition.from_model(row)
                audit_service.record(
                    db, actor, "role.renamed", "role", new_name,
                    old_value={"name": old_name},
                    new_value={"name": new_name, "display_name": renamed.display_name, "users_moved": moved},
                    request=request,
                )
                self.registry.invalidate(old_name, new_name)
        except IntegrityError:
            raise DuplicateRoleError(f"Role '{new_name}' already exists")
        except StaleDataError:
            raise ConcurrentUpdateError(f"Role '{old_name}' was modified concurrently")

        self.registry.invalidate(old_name, new_name)
        if new_name != old_name:
            logger.info("Role '%s' renamed to '%s' (%d users moved)", old_name, new_name, moved)
        return renamed

    def delete_role(
        self,
        db: Session,
        name: str,
        actor: Optional[Principal] = None,
        request=None,
    ) -> None:
        """Delete a role nobody holds.

        Raises:
            ImmutableRoleError, RoleNotFoundError, RoleInUseError.
        """
        ensure_admin(actor)
        if name == ADMIN_ROLE:
            raise ImmutableRoleError("The admin role cannot be deleted")

        try:
            with atomic(db):
                row = self.registry.get_row(db, name, lock=True)
                if row is None:
                    raise RoleNotFoundError(f"Role '{name}' not found")
                if row.is_built_in:
                    raise ImmutableRoleError(f"Role '{name}' is built in")
                holders = self.registry.count_users(db, name)
                if holders:
                    raise RoleInUseError(
                        f"Cannot delete role '{name}': {holders} user(s) are assigned to it"
                    )
                before = RoleDefinition.from_model(row).to_dict()
                self.registry.remove(db, row)
                audit_service.record(
                    db, actor, "role.deleted", "role", name,
                    old_value=before, request=request,
                )
                self.registry.invalidate(name)
        except IntegrityError:
            # A user was bound to the role between the check and the delete.
            raise RoleInUseError(f"Cannot delete role '{name}': users are assigned to it")

        self.registry.invalidate(name)
        logger.info("Role '%s' deleted", name)

    def seed_role(
        self,
        db: Session,
        name: str,
        display_name: str,
        permissions: Mapping[Any, Any],
        data_reach: DataReachEnum,
        is_built_in: bool = False,
    ) -> bool:
        """Insert a role if missing, without audit. Returns True if inserted."""
        if self.registry.exists(db, name):
            return False
        db.add(Role(
            name=name,
            display_name=display_name,
            permissions_json=serialize_matrix(validate_matrix(permissions)),
            data_reach=data_reach,
            is_built_in=is_built_in,
        ))
        db.flush()
        return True


role_service = RoleService(role_registry)
