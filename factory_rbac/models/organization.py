"""Department and Group models."""

from sqlalchemy import Column, Integer, String, DateTime, func
from factory_rbac.db.base import Base


class Department(Base):
    """Factory department. Target of the department data reach."""
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class Group(Base):
    """Shift group. Target of the group data reach."""
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
