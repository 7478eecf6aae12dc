"""Auth service — login and token issuing for approved users."""

import logging
from typing import Dict, Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from factory_rbac.models.user import User, UserStatusEnum
from factory_rbac.core.security import verify_password, create_access_token
from factory_rbac.core.exceptions import AuthenticationError, RoleIntegrityError
from factory_rbac.services.permissions import ADMIN_ROLE
from factory_rbac.services.registration_service import utcnow
from factory_rbac.services.role_registry import role_registry

integrity_logger = logging.getLogger("factory_rbac.integrity")


class AuthService:
    """Handles authentication. Authorization lives in the access service."""

    @staticmethod
    def authenticate(db: Session, login: str, password: str) -> Dict[str, Any]:
        """Authenticate by username or email and return an access token.

        Raises:
            AuthenticationError: If credentials are invalid or the account is
                not active.
            RoleIntegrityError: If an active account points at a role that
                no longer exists.
        """
        login = (login or "").strip().lower()
        user = (
            db.query(User)
            .filter(or_(User.username_lower == login, func.lower(User.email) == login))
            .first()
        )
        if not user or not verify_password(password, user.hashed_password):
            raise AuthenticationError("Invalid username or password")

        if user.status == UserStatusEnum.pending:
            raise AuthenticationError("Account is pending admin approval")
        if user.status != UserStatusEnum.active:
            raise AuthenticationError("Account is disabled")
        if user.role_name != ADMIN_ROLE and role_registry.find_role(db, user.role_name) is None:
            integrity_logger.critical(
                "Active user %s references missing role '%s'; refusing login",
                user.id, user.role_name,
            )
            raise RoleIntegrityError("Account role is misconfigured; contact an administrator")

        token_data = {
            "sub": str(user.id),
            "username": user.username,
            "role": user.role_name,
            "tv": user.token_version,
        }
        access_token = create_access_token(token_data)

        user.last_login_at = utcnow()
        db.commit()

        return {
            "access_token": access_token,
            "token_type": "bearer",
            "user": {
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "role": user.role_name,
                "department_id": user.department_id,
                "group_id": user.group_id,
            },
        }


auth_service = AuthService()
