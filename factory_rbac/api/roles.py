"""Roles API router — the admin-managed permission matrix."""

from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from factory_rbac.core.security import require_active_principal, require_admin
from factory_rbac.db.session import get_db
from factory_rbac.schemas.schemas import (
    MessageResponse, RoleCreate, RoleOut, RolePermissionsUpdate, RoleRename,
)
from factory_rbac.services.permissions import Principal
from factory_rbac.services.role_service import role_service

router = APIRouter(prefix="/roles", tags=["roles"])


def _matrix(permissions) -> dict:
    return {name: entry.model_dump() for name, entry in permissions.items()}


@router.get("", response_model=List[RoleOut])
async def list_roles(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_active_principal),
):
    """List roles. Any active user may read them, e.g. to fill a role picker."""
    return [role.to_dict() for role in role_service.list_roles(db)]


@router.get("/{name}", response_model=RoleOut)
async def get_role(
    name: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_active_principal),
):
    return role_service.get_role(db, name).to_dict()


@router.post("", response_model=RoleOut, status_code=201)
async def create_role(
    body: RoleCreate,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    role = role_service.create_role(
        db, body.name, body.display_name, _matrix(body.permissions), body.data_reach,
        actor=admin, request=request,
    )
    return role.to_dict()


@router.put("/{name}/permissions", response_model=RoleOut)
async def update_role_permissions(
    name: str,
    body: RolePermissionsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    """Replace a role's matrix and data reach.

    Send the `version` you read to get a 409 instead of silently
    overwriting someone else's edit.
    """
    role = role_service.update_permissions(
        db, name, _matrix(body.permissions), body.data_reach,
        expected_version=body.version, actor=admin, request=request,
    )
    return role.to_dict()


@router.post("/{name}/rename", response_model=RoleOut)
async def rename_role(
    name: str,
    body: RoleRename,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    role = role_service.rename_role(
        db, name, body.new_name, body.display_name, actor=admin, request=request,
    )
    return role.to_dict()


@router.delete("/{name}", response_model=MessageResponse)
async def delete_role(
    name: str,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    role_service.delete_role(db, name, actor=admin, request=request)
    return MessageResponse(message=f"Role '{name}' deleted")
