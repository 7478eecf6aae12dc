"""Admin API router — audit trail and health."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from factory_rbac.core.security import require_admin
from factory_rbac.db.session import get_db
from factory_rbac.schemas.schemas import AuditLogOut
from factory_rbac.services.audit_service import audit_service
from factory_rbac.services.permissions import Principal
from factory_rbac.services.role_cache import role_cache

logger = logging.getLogger("factory_rbac")

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit")
async def get_audit_logs(
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    actor_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    """Query audit logs (admin only)."""
    result = audit_service.query_logs(db, actor_id, action, resource_type, page, page_size)
    return {
        "logs": [AuditLogOut.model_validate(log) for log in result["logs"]],
        "total": result["total"],
        "page": result["page"],
        "page_size": result["page_size"],
    }


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """System health check — database and role cache."""
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        db_ok = False

    cache_ok = role_cache.health_check()

    return {
        "database": "ok" if db_ok else "error",
        "role_cache": "ok" if cache_ok else "error",
        "status": "healthy" if db_ok and cache_ok else "degraded",
    }
