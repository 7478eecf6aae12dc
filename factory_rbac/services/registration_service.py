"""Registration codes — single-use invitations for self-registration."""

import secrets
import string
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from factory_rbac.core.config import settings
from factory_rbac.core.exceptions import RegistrationError, ValidationError
from factory_rbac.db.session import atomic
from factory_rbac.models.registration_code import RegistrationCode
from factory_rbac.services.audit_service import audit_service
from factory_rbac.services.permissions import ensure_admin

CODE_PREFIX = "REG-"
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class RegistrationService:
    """Generates, validates and consumes registration codes."""

    @staticmethod
    def _new_code() -> str:
        return CODE_PREFIX + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))

    def generate_codes(
        self,
        db: Session,
        quantity: int = 1,
        expires_at: Optional[datetime] = None,
        actor=None,
        request=None,
    ) -> List[RegistrationCode]:
        """Generate up to REGISTRATION_CODE_MAX_BATCH codes in one transaction."""
        ensure_admin(actor)
        if quantity is None or quantity < 1:
            quantity = 1
        if quantity > settings.REGISTRATION_CODE_MAX_BATCH:
            raise ValidationError(
                f"Maximum {settings.REGISTRATION_CODE_MAX_BATCH} codes can be generated at once"
            )
        expires_at = _to_naive_utc(expires_at)
        if expires_at is not None and expires_at <= utcnow():
            raise ValidationError("Expiration date must be in the future")

        with atomic(db):
            codes = []
            for _ in range(quantity):
                value = self._new_code()
                while db.query(RegistrationCode.id).filter(RegistrationCode.code == value).first():
                    value = self._new_code()
                code = RegistrationCode(
                    code=value,
                    expires_at=expires_at,
                    created_by=getattr(actor, "id", None),
                )
                db.add(code)
                codes.append(code)
            db.flush()
            audit_service.record(
                db, actor, "registration_codes.generated", "registration_code",
                new_value={"codes": [c.code for c in codes], "expires_at": expires_at},
                request=request,
            )
        for code in codes:
            db.refresh(code)
        return codes

    @staticmethod
    def find_usable(db: Session, code: str) -> RegistrationCode:
        """Return an unused, unexpired code or raise `RegistrationError`."""
        normalized = normalize_code(code)
        if not normalized:
            raise RegistrationError("Registration code is required")
        row = (
            db.query(RegistrationCode)
            .filter(RegistrationCode.code == normalized, RegistrationCode.is_used.is_(False))
            .first()
        )
        if row is None:
            raise RegistrationError("Invalid or already used registration code")
        if row.expires_at is not None and row.expires_at < utcnow():
            raise RegistrationError("Registration code has expired")
        return row

    @staticmethod
    def consume(db: Session, code: RegistrationCode, user_id: int) -> None:
        """Mark a code used; fails if another registration consumed it first."""
        updated = (
            db.query(RegistrationCode)
            .filter(RegistrationCode.id == code.id, RegistrationCode.is_used.is_(False))
            .update(
                {
                    RegistrationCode.is_used: True,
                    RegistrationCode.used_by: user_id,
                    RegistrationCode.used_at: utcnow(),
                },
                synchronize_session="fetch",
            )
        )
        if updated != 1:
            raise RegistrationError("Invalid or already used registration code")

    @staticmethod
    def list_codes(db: Session, include_used: bool = False) -> List[RegistrationCode]:
        query = db.query(RegistrationCode)
        if not include_used:
            query = query.filter(RegistrationCode.is_used.is_(False))
        return query.order_by(RegistrationCode.id.desc()).all()


registration_service = RegistrationService()
