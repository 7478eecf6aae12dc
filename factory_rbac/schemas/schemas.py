"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime

from factory_rbac.models.role import DataReachEnum
from factory_rbac.models.user import UserStatusEnum


# ---- Auth ----
class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1)

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Optional[Dict[str, Any]] = None

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6)
    email: Optional[str] = None
    requested_role: Optional[str] = None
    registration_code: str = Field(..., min_length=1)

class CodeValidationResponse(BaseModel):
    valid: bool
    message: str


# ---- Roles ----
class PermissionEntry(BaseModel):
    can_view: bool = False
    can_edit: bool = False

class RoleCreate(BaseModel):
    name: str
    display_name: Optional[str] = None
    permissions: Dict[str, PermissionEntry] = Field(default_factory=dict)
    data_reach: str = DataReachEnum.own.value

class RolePermissionsUpdate(BaseModel):
    permissions: Dict[str, PermissionEntry]
    data_reach: str
    version: Optional[int] = Field(None, description="Version the edit is based on")

class RoleRename(BaseModel):
    new_name: str
    display_name: Optional[str] = None

class RoleOut(BaseModel):
    name: str
    display_name: str
    permissions: Dict[str, PermissionEntry]
    data_reach: DataReachEnum
    is_built_in: bool = False
    version: int = 1


# ---- Users ----
class UserOut(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    status: UserStatusEnum
    role_name: Optional[str] = None
    requested_role_name: Optional[str] = None
    department_id: Optional[int] = None
    group_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ApproveRequest(BaseModel):
    role_name: str
    department_id: Optional[int] = None
    group_id: Optional[int] = None

class StatusUpdateRequest(BaseModel):
    status: UserStatusEnum

class EffectivePermissionsOut(BaseModel):
    role: Optional[str] = None
    is_admin: bool = False
    data_reach: Optional[DataReachEnum] = None
    permissions: Dict[str, PermissionEntry]

class MeResponse(BaseModel):
    user: UserOut
    access: EffectivePermissionsOut


# ---- Registration codes ----
class RegistrationCodeGenerate(BaseModel):
    quantity: int = Field(1, ge=1)
    expires_at: Optional[datetime] = None

class RegistrationCodeOut(BaseModel):
    id: int
    code: str
    expires_at: Optional[datetime] = None
    is_used: bool
    created_by: Optional[int] = None
    used_by: Optional[int] = None
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Organization ----
class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None

class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None

class OrganizationUnitOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Audit ----
class AuditLogOut(BaseModel):
    id: int
    actor_id: Optional[int] = None
    actor_username: Optional[str] = None
    actor_role: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    old_value_json: Optional[str] = None
    new_value_json: Optional[str] = None
    request_id: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Common ----
class MessageResponse(BaseModel):
    message: str
