"""Seed the first admin user from env vars."""

import logging

from sqlalchemy.orm import Session

from factory_rbac.core.config import settings
from factory_rbac.core.security import hash_password
from factory_rbac.models.role import Role
from factory_rbac.models.user import User, UserStatusEnum
from factory_rbac.services.permissions import ADMIN_ROLE
from factory_rbac.services.registration_service import utcnow

logger = logging.getLogger("factory_rbac")


def seed_admin(db: Session) -> bool:
    """Create the active admin user if not already present."""
    if db.query(Role.id).filter(Role.name == ADMIN_ROLE).first() is None:
        logger.warning("Admin role not found. Run seed_roles first.")
        return False

    username = settings.ADMIN_USERNAME
    existing = db.query(User).filter(User.username_lower == username.lower()).first()
    if existing:
        logger.info("Admin '%s' already exists, skipping.", username)
        return False

    db.add(User(
        username=username,
        username_lower=username.lower(),
        hashed_password=hash_password(settings.ADMIN_PASSWORD),
        status=UserStatusEnum.active,
        role_name=ADMIN_ROLE,
        approved_at=utcnow(),
    ))
    db.commit()
    logger.info("Created admin user '%s'", username)
    return True
