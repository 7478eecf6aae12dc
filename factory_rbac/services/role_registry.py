"""Role registry — storage access for role definitions.

No validation, audit or transaction handling happens here; the
role service owns those. Reads by name go through the role cache.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from factory_rbac.core.exceptions import RoleNotFoundError
from factory_rbac.models.role import Role
from factory_rbac.models.user import User
from factory_rbac.services.permissions import RoleDefinition
from factory_rbac.services.role_cache import RoleCache, role_cache


class RoleRegistry:
    """Durable store of role definitions, fronted by a `RoleCache`."""

    def __init__(self, cache: RoleCache):
        self.cache = cache

    # ---- Snapshots ----

    def find_role(self, db: Session, name: Optional[str]) -> Optional[RoleDefinition]:
        """Cached lookup. Returns None if the role does not exist.

        Misses are loaded through a new session on the same bind, never the
        caller's transaction, so a snapshot taken before the last committed
        role change cannot be written back into the cache.
        """
        if not name:
            return None
        bind = db.get_bind()
        return self.cache.get_or_load(name, lambda n: self._load_committed(bind, n))

    def get_role(self, db: Session, name: str) -> RoleDefinition:
        role = self.find_role(db, name)
        if role is None:
            raise RoleNotFoundError(f"Role '{name}' not found")
        return role

    def list_roles(self, db: Session) -> List[RoleDefinition]:
        """All roles in creation order, read straight from the database."""
        rows = db.query(Role).order_by(Role.id.asc()).all()
        return [RoleDefinition.from_model(r) for r in rows]

    @staticmethod
    def _load_committed(bind, name: str) -> Optional[RoleDefinition]:
        session = Session(bind=bind)
        try:
            row = session.query(Role).filter(Role.name == name).first()
            return RoleDefinition.from_model(row) if row else None
        finally:
            session.close()

    # ---- Rows (used inside the role service's transactions) ----

    @staticmethod
    def get_row(db: Session, name: str, lock: bool = False) -> Optional[Role]:
        query = db.query(Role).filter(Role.name == name)
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def exists(db: Session, name: str) -> bool:
        return db.query(Role.id).filter(Role.name == name).first() is not None

    @staticmethod
    def add(db: Session, role: Role) -> Role:
        db.add(role)
        db.flush()
        return role

    @staticmethod
    def remove(db: Session, role: Role) -> None:
        db.delete(role)
        db.flush()

    @staticmethod
    def count_users(db: Session, name: str) -> int:
        """Users of any status whose authoritative role is `name`."""
        return db.query(User).filter(User.role_name == name).count()

    @staticmethod
    def reassign_users(db: Session, old_name: str, new_name: str) -> int:
        return (
            db.query(User)
            .filter(User.role_name == old_name)
            .update({User.role_name: new_name}, synchronize_session="fetch")
        )

    def invalidate(self, *names: str) -> None:
        self.cache.invalidate(*names)


role_registry = RoleRegistry(role_cache)
