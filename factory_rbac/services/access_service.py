"""Access service — composes the action check and data reach for callers.

Resource handlers call `can_perform` before mutating and `scope_query` /
`scope_check` before returning rows. Every path fails closed.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from factory_rbac.models.role import DataReachEnum
from factory_rbac.services import data_reach as reach_filter
from factory_rbac.services.data_reach import DEFAULT_FIELDS, ScopeFields
from factory_rbac.services.permissions import (
    ADMIN_ROLE,
    AuthorizationDecision,
    Principal,
    RoleDefinition,
    decide,
    effective_matrix,
    effective_reach,
)
from factory_rbac.services.role_registry import RoleRegistry, role_registry

logger = logging.getLogger("factory_rbac")
integrity_logger = logging.getLogger("factory_rbac.integrity")


class AccessService:
    """Authorization entry point used by every resource handler."""

    def __init__(self, registry: RoleRegistry):
        self.registry = registry

    def load_role(self, db: Session, principal: Principal) -> Optional[RoleDefinition]:
        if not principal.is_active or principal.role_name in (None, ADMIN_ROLE):
            return None
        role = self.registry.find_role(db, principal.role_name)
        if role is None:
            integrity_logger.critical(
                "Active user %s references missing role '%s'; denying access",
                principal.id, principal.role_name,
            )
        return role

    def decide(self, db: Session, principal: Principal, resource: Any, action: Any) -> AuthorizationDecision:
        try:
            role = self.load_role(db, principal)
        except Exception:
            logger.exception("Role lookup failed for user %s; denying access", principal.id)
            return AuthorizationDecision(None, None, False, reason="role lookup failed")
        return decide(principal, role, resource, action)

    def can_perform(self, db: Session, principal: Principal, resource: Any, action: Any) -> bool:
        return self.decide(db, principal, resource, action).allowed

    def reach_for(self, db: Session, principal: Principal) -> Optional[DataReachEnum]:
        try:
            role = self.load_role(db, principal)
        except Exception:
            logger.exception("Role lookup failed for user %s; no data reach", principal.id)
            return None
        return effective_reach(principal, role)

    def scope_query(
        self,
        db: Session,
        principal: Principal,
        query,
        model,
        fields: ScopeFields = DEFAULT_FIELDS,
    ):
        return reach_filter.scope_query(principal, self.reach_for(db, principal), query, model, fields)

    def scope_check(
        self,
        db: Session,
        principal: Principal,
        record: Any,
        fields: ScopeFields = DEFAULT_FIELDS,
    ) -> bool:
        return reach_filter.scope_check(principal, self.reach_for(db, principal), record, fields)

    def authorize_record(
        self,
        db: Session,
        principal: Principal,
        resource: Any,
        action: Any,
        record: Any,
        fields: ScopeFields = DEFAULT_FIELDS,
    ) -> bool:
        """Both axes for a single record: action allowed and record in reach."""
        if not self.can_perform(db, principal, resource, action):
            return False
        return self.scope_check(db, principal, record, fields)

    def effective_permissions(self, db: Session, principal: Principal) -> Dict[str, Any]:
        """What a client needs to render: role, reach and the full matrix."""
        try:
            role = self.load_role(db, principal)
        except Exception:
            logger.exception("Role lookup failed for user %s", principal.id)
            role = None
        reach = effective_reach(principal, role)
        return {
            "role": principal.role_name if principal.is_active else None,
            "is_admin": principal.is_admin,
            "data_reach": reach.value if reach else None,
            "permissions": {
                resource.value: flags.to_dict()
                for resource, flags in effective_matrix(principal, role).items()
            },
        }


access_service = AccessService(role_registry)
