"""Role model for dynamic RBAC."""

import enum

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Enum, func
from factory_rbac.db.base import Base


class DataReachEnum(str, enum.Enum):
    """How far a role's view extends over the rows of a resource."""
    own = "own"
    department = "department"
    group = "group"
    all = "all"

    @property
    def rank(self) -> int:
        return _REACH_ORDER.index(self)


_REACH_ORDER = [
    DataReachEnum.own,
    DataReachEnum.department,
    DataReachEnum.group,
    DataReachEnum.all,
]


class Role(Base):
    """Runtime-defined role with a JSON permission matrix and a data reach.

    The whole matrix lives in one column so a permission update is a
    single-row write.
    """
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    permissions_json = Column(Text, nullable=False, default="{}")
    data_reach = Column(Enum(DataReachEnum), nullable=False, default=DataReachEnum.own)
    is_built_in = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}
