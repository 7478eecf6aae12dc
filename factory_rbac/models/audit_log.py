"""Audit trail of role, user and registration-code changes."""

from sqlalchemy import Column, Index, Integer, String, Text, DateTime, ForeignKey, func
from factory_rbac.db.base import Base


class AuditLog(Base):
    """One row per role, user or registration-code change. Append-only.

    `actor_role` is the role the actor held when acting, so the entry still
    reads correctly after that role is renamed or deleted. A null actor is
    the system (CLI approvals, seeds).
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_target", "resource_type", "resource_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    actor_username = Column(String(100), nullable=True)
    actor_role = Column(String(50), nullable=True)
    action = Column(String(100), nullable=False, index=True)  # role.renamed, user.approved, ...
    resource_type = Column(String(50), nullable=False)  # role | user | registration_code
    resource_id = Column(String(100), nullable=True)  # role name or numeric id
    old_value_json = Column(Text, nullable=True)
    new_value_json = Column(Text, nullable=True)
    request_id = Column(String(64), nullable=True)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
