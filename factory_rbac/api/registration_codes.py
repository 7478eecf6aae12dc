"""Registration codes API router (admin only)."""

from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from factory_rbac.core.security import require_admin
from factory_rbac.db.session import get_db
from factory_rbac.schemas.schemas import RegistrationCodeGenerate, RegistrationCodeOut
from factory_rbac.services.permissions import Principal
from factory_rbac.services.registration_service import registration_service

router = APIRouter(prefix="/registration-codes", tags=["registration-codes"])


@router.post("/generate", response_model=List[RegistrationCodeOut], status_code=201)
async def generate_codes(
    body: RegistrationCodeGenerate,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return registration_service.generate_codes(
        db, body.quantity, body.expires_at, actor=admin, request=request,
    )


@router.get("", response_model=List[RegistrationCodeOut])
async def list_codes(
    include_used: bool = Query(False),
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return registration_service.list_codes(db, include_used)
