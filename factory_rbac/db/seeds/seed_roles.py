"""Seed the built-in admin role and the default factory roles."""

import logging

from sqlalchemy.orm import Session

from factory_rbac.models.role import DataReachEnum
from factory_rbac.services.permissions import ADMIN_ROLE, Resource
from factory_rbac.services.role_service import role_service

logger = logging.getLogger("factory_rbac")


def _grants(view=(), edit=()) -> dict:
    """Matrix with every resource listed; edit implies view."""
    return {
        resource.value: {
            "can_view": resource in view or resource in edit,
            "can_edit": resource in edit,
        }
        for resource in Resource
    }


DEFAULT_ROLES = [
    {
        "name": ADMIN_ROLE,
        "display_name": "Administrator",
        "permissions": _grants(edit=tuple(Resource)),
        "data_reach": DataReachEnum.all,
        "is_built_in": True,
    },
    {
        "name": "worker",
        "display_name": "Worker",
        "permissions": _grants(view=(Resource.products, Resource.tasks)),
        "data_reach": DataReachEnum.own,
    },
    {
        "name": "operator",
        "display_name": "Operator",
        "permissions": _grants(edit=(Resource.reports, Resource.tasks)),
        "data_reach": DataReachEnum.own,
    },
    {
        "name": "leader",
        "display_name": "Leader",
        "permissions": _grants(view=(Resource.reports,), edit=(Resource.tasks,)),
        "data_reach": DataReachEnum.department,
    },
]


def seed_roles(db: Session) -> int:
    """Insert default roles that don't already exist. Returns how many were added."""
    added = 0
    for role_data in DEFAULT_ROLES:
        if role_service.seed_role(db, **role_data):
            added += 1
    db.commit()
    logger.info("Seeded %d of %d default roles", added, len(DEFAULT_ROLES))
    return added
