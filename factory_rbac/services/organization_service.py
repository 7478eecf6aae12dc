"""Departments and groups — the placement targets of approval and data reach."""

from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from factory_rbac.core.exceptions import ResourceConflictError, ValidationError
from factory_rbac.db.session import atomic
from factory_rbac.models.organization import Department, Group
from factory_rbac.services.access_service import access_service
from factory_rbac.services.data_reach import ScopeFields
from factory_rbac.services.permissions import Principal

# A department row is "in reach" through its own id; rows have no owner.
DEPARTMENT_FIELDS = ScopeFields(owner=None, department="id", group=None)
GROUP_FIELDS = ScopeFields(owner=None, department=None, group="id")


class OrganizationService:

    @staticmethod
    def _create(db: Session, model, name: str, description: Optional[str]):
        name = (name or "").strip()
        if not name:
            raise ValidationError(f"{model.__name__} name is required")
        try:
            with atomic(db):
                if db.query(model.id).filter(model.name == name).first():
                    raise ResourceConflictError(f"{model.__name__} '{name}' already exists")
                row = model(name=name, description=description)
                db.add(row)
        except IntegrityError:
            raise ResourceConflictError(f"{model.__name__} '{name}' already exists")
        db.refresh(row)
        return row

    def create_department(self, db: Session, name: str, description: Optional[str] = None) -> Department:
        return self._create(db, Department, name, description)

    def create_group(self, db: Session, name: str, description: Optional[str] = None) -> Group:
        return self._create(db, Group, name, description)

    @staticmethod
    def list_departments(db: Session, principal: Optional[Principal] = None) -> List[Department]:
        """All departments, or only those inside `principal`'s data reach."""
        query = db.query(Department)
        if principal is not None:
            query = access_service.scope_query(db, principal, query, Department, DEPARTMENT_FIELDS)
        return query.order_by(Department.name.asc()).all()

    @staticmethod
    def list_groups(db: Session, principal: Optional[Principal] = None) -> List[Group]:
        """All groups, or only those inside `principal`'s data reach."""
        query = db.query(Group)
        if principal is not None:
            query = access_service.scope_query(db, principal, query, Group, GROUP_FIELDS)
        return query.order_by(Group.name.asc()).all()


organization_service = OrganizationService()
