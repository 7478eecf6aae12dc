"""Auth API router — register, login, me, registration code check."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from factory_rbac.core.config import settings
from factory_rbac.core.exceptions import AuthenticationError, RegistrationError
from factory_rbac.core.rate_limiter import limiter
from factory_rbac.core.security import get_current_principal, hash_password
from factory_rbac.db.session import get_db
from factory_rbac.schemas.schemas import (
    CodeValidationResponse, LoginRequest, MeResponse, MessageResponse,
    RegisterRequest, TokenResponse, UserOut,
)
from factory_rbac.services.access_service import access_service
from factory_rbac.services.auth_service import auth_service
from factory_rbac.services.permissions import Principal
from factory_rbac.services.registration_service import registration_service
from factory_rbac.services.user_service import user_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=MessageResponse, status_code=201)
@limiter.limit(settings.REGISTER_RATE_LIMIT)
async def register(request: Request, body: RegisterRequest, db: Session = Depends(get_db)):
    """Self-register with a registration code. The account starts pending."""
    user_service.register(
        db,
        username=body.username,
        password_hash=hash_password(body.password),
        requested_role_name=body.requested_role,
        registration_code=body.registration_code,
        email=body.email,
        request=request,
    )
    return MessageResponse(message="Registration successful. Please wait for admin approval.")


@router.post("/login", response_model=TokenResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate with username or email and return a JWT."""
    try:
        return auth_service.authenticate(db, body.username, body.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))


@router.get("/me", response_model=MeResponse)
async def get_me(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Current user with the effective permissions a client renders from."""
    user = user_service.get_user(db, principal.id)
    return MeResponse(
        user=UserOut.model_validate(user),
        access=access_service.effective_permissions(db, principal),
    )


@router.get("/validate-code/{code}", response_model=CodeValidationResponse)
async def validate_code(code: str, db: Session = Depends(get_db)):
    """Check a registration code before the user fills in the form."""
    try:
        registration_service.find_usable(db, code)
    except RegistrationError as e:
        return CodeValidationResponse(valid=False, message=str(e))
    return CodeValidationResponse(valid=True, message="Registration code is valid")
