"""User model."""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, func
from factory_rbac.db.base import Base


class UserStatusEnum(str, enum.Enum):
    pending = "pending"
    active = "active"
    disabled = "disabled"


class User(Base):
    """Factory user. Only `role_name` is authoritative for authorization;
    `requested_role_name` is what the user asked for at registration.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False)
    username_lower = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    status = Column(Enum(UserStatusEnum), nullable=False, default=UserStatusEnum.pending, index=True)
    role_name = Column(
        String(50),
        ForeignKey("roles.name", onupdate="CASCADE", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    requested_role_name = Column(String(50), nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=True)
    token_version = Column(Integer, nullable=False, default=0)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
