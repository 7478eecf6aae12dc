"""Departments and groups API router."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from factory_rbac.core.security import RequirePermission
from factory_rbac.db.session import get_db
from factory_rbac.schemas.schemas import DepartmentCreate, GroupCreate, OrganizationUnitOut
from factory_rbac.services.organization_service import organization_service
from factory_rbac.services.permissions import Action, Principal, Resource

router = APIRouter(tags=["organization"])


@router.get("/departments", response_model=List[OrganizationUnitOut])
async def list_departments(
    db: Session = Depends(get_db),
    principal: Principal = Depends(RequirePermission(Resource.departments, Action.view)),
):
    return organization_service.list_departments(db, principal)


@router.post("/departments", response_model=OrganizationUnitOut, status_code=201)
async def create_department(
    body: DepartmentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(RequirePermission(Resource.departments, Action.edit)),
):
    return organization_service.create_department(db, body.name, body.description)


@router.get("/groups", response_model=List[OrganizationUnitOut])
async def list_groups(
    db: Session = Depends(get_db),
    principal: Principal = Depends(RequirePermission(Resource.groups, Action.view)),
):
    return organization_service.list_groups(db, principal)


@router.post("/groups", response_model=OrganizationUnitOut, status_code=201)
async def create_group(
    body: GroupCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(RequirePermission(Resource.groups, Action.edit)),
):
    return organization_service.create_group(db, body.name, body.description)
