"""User lifecycle — registration, approval and status changes.

States: pending -> active <-> disabled, and pending -> disabled (rejecting
a registration). `approve` is the only writer of the authoritative
role / department / group triple.
"""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from factory_rbac.core.exceptions import (
    AlreadyProcessedError,
    ConcurrentUpdateError,
    DepartmentNotFoundError,
    GroupNotFoundError,
    InvalidStatusTransitionError,
    RegistrationError,
    RoleNotFoundError,
    UserNotFoundError,
)
from factory_rbac.db.session import atomic
from factory_rbac.models.organization import Department, Group
from factory_rbac.models.user import User, UserStatusEnum
from factory_rbac.services.access_service import access_service
from factory_rbac.services.audit_service import audit_service
from factory_rbac.services.data_reach import ScopeFields
from factory_rbac.services.permissions import ADMIN_ROLE, Principal, ensure_admin
from factory_rbac.services.registration_service import (
    RegistrationService,
    registration_service,
    utcnow,
)
from factory_rbac.services.role_registry import RoleRegistry, role_registry

logger = logging.getLogger("factory_rbac")

# A user row is owned by itself.
USER_FIELDS = ScopeFields(owner="id")

# (from, to) pairs reachable through set_status. pending -> active is not
# listed: only approve() activates a pending user.
STATUS_TRANSITIONS = {
    (UserStatusEnum.pending, UserStatusEnum.disabled),
    (UserStatusEnum.active, UserStatusEnum.disabled),
    (UserStatusEnum.disabled, UserStatusEnum.active),
}


class UserLifecycleService:
    """State machine over `User.status`."""

    def __init__(self, registry: RoleRegistry, codes: RegistrationService):
        self.registry = registry
        self.codes = codes

    @staticmethod
    def get_user(db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    @staticmethod
    def list_users(
        db: Session,
        principal: Optional[Principal] = None,
        status: Optional[UserStatusEnum] = None,
    ) -> List[User]:
        """Users ordered by id, narrowed to `principal`'s data reach when given."""
        query = db.query(User)
        if status is not None:
            query = query.filter(User.status == status)
        if principal is not None:
            query = access_service.scope_query(db, principal, query, User, USER_FIELDS)
        return query.order_by(User.id.asc()).all()

    @staticmethod
    def list_pending(db: Session) -> List[User]:
        return (
            db.query(User)
            .filter(User.status == UserStatusEnum.pending)
            .order_by(User.created_at.asc(), User.id.asc())
            .all()
        )

    def register(
        self,
        db: Session,
        username: str,
        password_hash: str,
        requested_role_name: Optional[str],
        registration_code: str,
        email: Optional[str] = None,
        request=None,
    ) -> User:
        """Create a pending user from a self-registration.

        The requested role is recorded for the approving admin only; it is
        never copied into `role_name`.

        Raises:
            RegistrationError: bad or used code, taken username/email, or an
                attempt to register as admin.
        """
        username = (username or "").strip()
        if not username:
            raise RegistrationError("Username is required")
        requested = (requested_role_name or "").strip().lower() or None
        if requested == ADMIN_ROLE:
            raise RegistrationError("Admin accounts cannot be registered")
        email = (email or "").strip() or None

        try:
            with atomic(db):
                code = self.codes.find_usable(db, registration_code)

                if db.query(User.id).filter(User.username_lower == username.lower()).first():
                    raise RegistrationError("Username already taken")
                if email and db.query(User.id).filter(func.lower(User.email) == email.lower()).first():
                    raise RegistrationError("Email already registered")

                user = User(
                    username=username,
                    username_lower=username.lower(),
                    email=email,
                    hashed_password=password_hash,
                    status=UserStatusEnum.pending,
                    role_name=None,
                    requested_role_name=requested,
                )
                db.add(user)
                db.flush()
                self.codes.consume(db, code, user.id)
                audit_service.record(
                    db, None, "user.registered", "user", user.id,
                    new_value={"username": username, "requested_role": requested},
                    request=request,
                )
        except IntegrityError:
            raise RegistrationError("Username already taken")

        db.refresh(user)
        logger.info("User '%s' registered and is pending approval", username)
        return user

    def approve(
        self,
        db: Session,
        user_id: int,
        role_name: str,
        department_id: Optional[int] = None,
        group_id: Optional[int] = None,
        actor: Optional[Principal] = None,
        request=None,
    ) -> User:
        """Activate a pending user, binding role, department and group together.

        Raises:
            UserNotFoundError, AlreadyProcessedError, RoleNotFoundError,
            DepartmentNotFoundError, GroupNotFoundError.
        """
        ensure_admin(actor)

        with atomic(db):
            user = self.get_user(db, user_id)
            if user.status != UserStatusEnum.pending:
                raise AlreadyProcessedError(
                    f"User {user_id} is already {user.status.value}"
                )
            # Lock the role row so a concurrent delete cannot slip in.
            if self.registry.get_row(db, role_name, lock=True) is None:
                raise RoleNotFoundError(f"Role '{role_name}' not found")
            if department_id is not None and db.get(Department, department_id) is None:
                raise DepartmentNotFoundError(f"Department {department_id} not found")
            if group_id is not None and db.get(Group, group_id) is None:
                raise GroupNotFoundError(f"Group {group_id} not found")

            updated = (
                db.query(User)
                .filter(User.id == user_id, User.status == UserStatusEnum.pending)
                .update(
                    {
                        User.status: UserStatusEnum.active,
                        User.role_name: role_name,
                        User.department_id: department_id,
                        User.group_id: group_id,
                        User.approved_by: getattr(actor, "id", None),
                        User.approved_at: utcnow(),
                    },
                    synchronize_session="fetch",
                )
            )
            if updated != 1:
                raise AlreadyProcessedError(f"User {user_id} was processed concurrently")

            audit_service.record(
                db, actor, "user.approved", "user", user_id,
                old_value={"status": UserStatusEnum.pending.value},
                new_value={
                    "status": UserStatusEnum.active.value,
                    "role_name": role_name,
                    "department_id": department_id,
                    "group_id": group_id,
                },
                request=request,
            )

        db.refresh(user)
        logger.info("User %s approved as '%s'", user_id, role_name)
        return user

    def set_status(
        self,
        db: Session,
        user_id: int,
        new_status,
        actor: Optional[Principal] = None,
        request=None,
    ) -> User:
        """Move a user between statuses outside of approval.

        Setting the current status again is a no-op. Disabling bumps the
        user's token version, so tokens issued before it stop working even
        after a later re-enable.

        Raises:
            AuthorizationError, UserNotFoundError, InvalidStatusTransitionError,
            ConcurrentUpdateError.
        """
        ensure_admin(actor)
        try:
            target = UserStatusEnum(new_status)
        except ValueError:
            raise InvalidStatusTransitionError(f"Unknown status '{new_status}'")
        if actor is not None and actor.id == user_id:
            raise InvalidStatusTransitionError("You cannot change your own status")

        with atomic(db):
            user = db.query(User).filter(User.id == user_id).with_for_update().first()
            if not user:
                raise UserNotFoundError(f"User {user_id} not found")
            current = user.status
            if current == target:
                return user

            if (current, target) not in STATUS_TRANSITIONS:
                if current == UserStatusEnum.pending and target == UserStatusEnum.active:
                    raise InvalidStatusTransitionError(
                        "Pending users must be approved to become active"
                    )
                raise InvalidStatusTransitionError(
                    f"Cannot change status from {current.value} to {target.value}"
                )
            if target == UserStatusEnum.active and user.role_name is None:
                raise InvalidStatusTransitionError(
                    "User was never approved; approve a new registration instead"
                )

            values = {User.status: target}
            if target == UserStatusEnum.disabled:
                values[User.token_version] = (user.token_version or 0) + 1
            updated = (
                db.query(User)
                .filter(User.id == user_id, User.status == current)
                .update(values, synchronize_session="fetch")
            )
            if updated != 1:
                raise ConcurrentUpdateError(f"User {user_id} was modified concurrently")

            audit_service.record(
                db, actor, "user.status_changed", "user", user_id,
                old_value={"status": current.value},
                new_value={"status": target.value},
                request=request,
            )

        db.refresh(user)
        logger.info("User %s status changed: %s -> %s", user_id, current.value, target.value)
        return user


user_service = UserLifecycleService(role_registry, registration_service)
