"""Exception taxonomy for the access-control core."""

from fastapi import HTTPException, status


class FactoryAppError(Exception):
    """Base exception for the access-control core."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(FactoryAppError):
    """Raised when authentication fails."""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "authentication_failed"


class AuthorizationError(FactoryAppError):
    """Raised when user lacks permission."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


# ---- Not found ----
class ResourceNotFoundError(FactoryAppError):
    """Raised when a requested resource is not found."""
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class RoleNotFoundError(ResourceNotFoundError):
    code = "role_not_found"


class UserNotFoundError(ResourceNotFoundError):
    code = "user_not_found"


class DepartmentNotFoundError(ResourceNotFoundError):
    code = "department_not_found"


class GroupNotFoundError(ResourceNotFoundError):
    code = "group_not_found"


# ---- Conflicts ----
class ResourceConflictError(FactoryAppError):
    """Raised when a mutation conflicts with current state."""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class DuplicateRoleError(ResourceConflictError):
    code = "duplicate_role"


class RoleInUseError(ResourceConflictError):
    """Raised when deleting a role that users still reference."""
    code = "role_in_use"


class AlreadyProcessedError(ResourceConflictError):
    """Raised when approving a user that is no longer pending."""
    code = "already_processed"


class InvalidStatusTransitionError(ResourceConflictError):
    code = "invalid_status_transition"


class ConcurrentUpdateError(ResourceConflictError):
    """Raised when a write was based on a stale version of a row."""
    code = "concurrent_update"


class ImmutableRoleError(FactoryAppError):
    """Raised when mutating a built-in role."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "immutable_role"


# ---- Validation ----
class ValidationError(FactoryAppError):
    """Raised when input validation fails."""
    status_code = 422
    code = "validation_error"


class InvalidRoleNameError(ValidationError):
    code = "invalid_name"


class InvalidReachError(ValidationError):
    code = "invalid_reach"


class InvalidResourceError(ValidationError):
    code = "invalid_resource"


class InvalidPermissionCombinationError(ValidationError):
    """Raised when a matrix entry grants edit without view."""
    code = "invalid_permission_combination"


class RegistrationError(FactoryAppError):
    """Raised when a self-registration request is rejected."""
    code = "registration_rejected"


class RoleIntegrityError(FactoryAppError):
    """Raised when an active user references a role that does not exist.

    Indicates data corruption rather than a caller mistake.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "role_integrity_error"


class CacheInvalidationError(FactoryAppError):
    """Raised when a role cache entry could not be invalidated."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "cache_invalidation_failed"


# HTTP exception shortcuts
def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )
