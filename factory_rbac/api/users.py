"""Users API router — scoped listing, approval and status changes."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from factory_rbac.core.security import RequirePermission, require_admin
from factory_rbac.db.session import get_db
from factory_rbac.models.user import UserStatusEnum
from factory_rbac.schemas.schemas import ApproveRequest, StatusUpdateRequest, UserOut
from factory_rbac.services.access_service import access_service
from factory_rbac.services.permissions import Action, Principal, Resource
from factory_rbac.services.user_service import USER_FIELDS, user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[UserOut])
async def list_users(
    status: Optional[UserStatusEnum] = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(RequirePermission(Resource.users, Action.view)),
):
    """Users inside the caller's data reach."""
    return user_service.list_users(db, principal, status)


@router.get("/pending", response_model=List[UserOut])
async def list_pending_users(
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return user_service.list_pending(db)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(RequirePermission(Resource.users, Action.view)),
):
    user = user_service.get_user(db, user_id)
    if not access_service.scope_check(db, principal, user, USER_FIELDS):
        # Out-of-reach rows look the same as missing ones.
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return user


@router.post("/{user_id}/approve", response_model=UserOut)
async def approve_user(
    user_id: int,
    body: ApproveRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    """Activate a pending user with a role and placement chosen by the admin."""
    return user_service.approve(
        db, user_id, body.role_name, body.department_id, body.group_id,
        actor=admin, request=request,
    )


@router.put("/{user_id}/status", response_model=UserOut)
async def update_user_status(
    user_id: int,
    body: StatusUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return user_service.set_status(db, user_id, body.status, actor=admin, request=request)
