"""JWT authentication and permission-matrix authorization helpers."""

import bcrypt
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from factory_rbac.core.config import settings
from factory_rbac.core.exceptions import forbidden, unauthorized
from factory_rbac.db.session import get_db
from factory_rbac.models.user import User
from factory_rbac.services.access_service import access_service
from factory_rbac.services.permissions import Action, Principal, Resource

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    pwd_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(pwd_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise unauthorized("Invalid or expired token")
    if payload.get("type") != "access":
        raise unauthorized("Invalid token type")
    return payload


def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the bearer token to a principal reloaded from the database.

    The token only identifies the user. Status, role and department are read
    fresh on every request, so approval, disabling and role changes take
    effect immediately.
    """
    if credentials is None:
        raise unauthorized()
    payload = decode_token(credentials.credentials)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise unauthorized("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise unauthorized("User no longer exists")
    if payload.get("tv", 0) != (user.token_version or 0):
        raise unauthorized("Token has been revoked")
    request.state.principal_id = user.id
    return Principal.from_user(user)


def require_active_principal(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_active:
        raise unauthorized(f"Account is {principal.status.value}")
    return principal


def require_admin(principal: Principal = Depends(require_active_principal)) -> Principal:
    if not principal.is_admin:
        raise forbidden("Admin access required")
    return principal


class RequirePermission:
    """Dependency that checks the caller's role matrix for one resource action."""

    def __init__(self, resource: Resource, action: Action):
        self.resource = resource
        self.action = action

    def __call__(
        self,
        principal: Principal = Depends(require_active_principal),
        db: Session = Depends(get_db),
    ) -> Principal:
        if not access_service.can_perform(db, principal, self.resource, self.action):
            raise forbidden(f"Cannot {self.action.value} {self.resource.value}")
        return principal
