"""Audit service — append-only trail of authorization-relevant mutations."""

import json
from typing import Optional, Any

from fastapi import Request
from sqlalchemy.orm import Session

from factory_rbac.models.audit_log import AuditLog


class AuditService:
    """Records immutable audit log entries for role and user mutations."""

    @staticmethod
    def record(
        db: Session,
        actor,
        action: str,
        resource_type: str,
        resource_id: Optional[Any] = None,
        old_value: Optional[Any] = None,
        new_value: Optional[Any] = None,
        request: Optional[Request] = None,
    ) -> AuditLog:
        """Add an audit entry to the caller's transaction.

        Args:
            actor: the acting `Principal`, or None for system actions (CLI, seeds).
            action: e.g. "role.renamed", "user.approved"
            resource_type: role, user, registration_code

        The entry is flushed but not committed: it commits or rolls back
        together with the mutation it describes.
        """
        ip = request_id = None
        if request is not None:
            ip = request.client.host if request.client else None
            request_id = getattr(request.state, "request_id", None)

        entry = AuditLog(
            actor_id=getattr(actor, "id", None),
            actor_username=getattr(actor, "username", None),
            actor_role=getattr(actor, "role_name", None),
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            old_value_json=json.dumps(old_value, default=str) if old_value is not None else None,
            new_value_json=json.dumps(new_value, default=str) if new_value is not None else None,
            request_id=request_id,
            ip_address=ip,
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def query_logs(
        db: Session,
        actor_id: Optional[int] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ):
        """Query audit logs with filters and pagination."""
        query = db.query(AuditLog)

        if actor_id:
            query = query.filter(AuditLog.actor_id == actor_id)
        if action:
            query = query.filter(AuditLog.action.ilike(f"%{action}%"))
        if resource_type:
            query = query.filter(AuditLog.resource_type == resource_type)

        total = query.count()
        logs = (
            query.order_by(AuditLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )

        return {
            "logs": logs,
            "total": total,
            "page": page,
            "page_size": page_size,
        }


audit_service = AuditService()
