from datetime import datetime, timedelta

import pytest

from factory_rbac.core.exceptions import (
    AlreadyProcessedError,
    AuthenticationError,
    AuthorizationError,
    DepartmentNotFoundError,
    InvalidStatusTransitionError,
    RegistrationError,
    RoleNotFoundError,
    ValidationError,
)
from factory_rbac.core.security import hash_password
from factory_rbac.models.registration_code import RegistrationCode
from factory_rbac.models.user import UserStatusEnum
from factory_rbac.services.access_service import access_service
from factory_rbac.services.auth_service import auth_service
from factory_rbac.services.permissions import Action, Principal, Resource
from factory_rbac.services.registration_service import registration_service, utcnow
from factory_rbac.services.user_service import user_service

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture()
def code(db):
    return registration_service.generate_codes(db, 1)[0].code


def _register(db, code, username="nina", requested="operator"):
    return user_service.register(db, username, PASSWORD_HASH, requested, code)


class TestRegistrationCodes:
    def test_generated_codes_are_unique_and_unused(self, db):
        codes = registration_service.generate_codes(db, 5)
        assert len({c.code for c in codes}) == 5
        assert all(c.code.startswith("REG-") and len(c.code) == 12 for c in codes)
        assert all(not c.is_used for c in codes)

    def test_batch_limit(self, db):
        with pytest.raises(ValidationError):
            registration_service.generate_codes(db, 11)

    def test_expiry_must_be_in_future(self, db):
        with pytest.raises(ValidationError):
            registration_service.generate_codes(db, 1, utcnow() - timedelta(days=1))

    def test_lookup_is_case_insensitive(self, db, code):
        assert registration_service.find_usable(db, f"  {code.lower()} ").code == code

    def test_expired_code(self, db):
        db.add(RegistrationCode(code="REG-OLDCODE1", expires_at=datetime(2000, 1, 1)))
        db.commit()
        with pytest.raises(RegistrationError, match="expired"):
            registration_service.find_usable(db, "REG-OLDCODE1")

    def test_non_admin_cannot_generate(self, db, make_user):
        worker = Principal.from_user(make_user("wes", role_name="worker"))
        with pytest.raises(AuthorizationError):
            registration_service.generate_codes(db, 1, actor=worker)


class TestRegister:
    def test_registers_pending_user_without_role(self, db, code):
        user = _register(db, code)
        assert user.status == UserStatusEnum.pending
        assert user.role_name is None
        assert user.requested_role_name == "operator"

    def test_code_is_consumed(self, db, code):
        user = _register(db, code)
        row = db.query(RegistrationCode).filter(RegistrationCode.code == code).one()
        assert row.is_used
        assert row.used_by == user.id
        with pytest.raises(RegistrationError):
            _register(db, code, username="other")

    def test_username_is_case_insensitively_unique(self, db, make_user):
        make_user("Nina", role_name="worker")
        codes = registration_service.generate_codes(db, 1)
        with pytest.raises(RegistrationError, match="taken"):
            _register(db, codes[0].code, username="nina")
        db.expire_all()
        assert not db.query(RegistrationCode).filter(RegistrationCode.code == codes[0].code).one().is_used

    def test_cannot_request_admin(self, db, code):
        with pytest.raises(RegistrationError):
            _register(db, code, requested="admin")

    def test_pending_user_has_no_access(self, db, code):
        principal = Principal.from_user(_register(db, code))
        for resource in Resource:
            assert not access_service.can_perform(db, principal, resource, Action.view)
        assert access_service.reach_for(db, principal) is None

    def test_pending_user_cannot_log_in(self, db, code):
        _register(db, code)
        with pytest.raises(AuthenticationError, match="pending"):
            auth_service.authenticate(db, "nina", PASSWORD)


class TestApprove:
    def test_approve_binds_role_and_placement(self, db, code, admin_principal, department, group):
        user = _register(db, code)
        approved = user_service.approve(
            db, user.id, "leader", department.id, group.id, actor=admin_principal,
        )
        assert approved.status == UserStatusEnum.active
        assert approved.role_name == "leader"
        assert approved.department_id == department.id
        assert approved.group_id == group.id
        assert approved.approved_by == admin_principal.id

        principal = Principal.from_user(approved)
        assert access_service.can_perform(db, principal, Resource.reports, Action.view)
        assert auth_service.authenticate(db, "nina", PASSWORD)["user"]["role"] == "leader"

    def test_admin_may_override_requested_role(self, db, code):
        user = _register(db, code, requested="operator")
        approved = user_service.approve(db, user.id, "worker")
        assert approved.role_name == "worker"

    def test_second_approval_is_rejected(self, db, code):
        user = _register(db, code)
        user_service.approve(db, user.id, "worker")
        with pytest.raises(AlreadyProcessedError):
            user_service.approve(db, user.id, "operator")

    def test_unknown_role(self, db, code):
        user = _register(db, code)
        with pytest.raises(RoleNotFoundError):
            user_service.approve(db, user.id, "ghost")
        db.expire_all()
        assert user_service.get_user(db, user.id).status == UserStatusEnum.pending

    def test_unknown_department(self, db, code):
        user = _register(db, code)
        with pytest.raises(DepartmentNotFoundError):
            user_service.approve(db, user.id, "worker", department_id=999)

    def test_non_admin_cannot_approve(self, db, code, make_user):
        leader = Principal.from_user(make_user("lee", role_name="leader"))
        user = _register(db, code)
        with pytest.raises(AuthorizationError):
            user_service.approve(db, user.id, "worker", actor=leader)


class TestSetStatus:
    def test_disable_revokes_access_and_login(self, db, make_user):
        user = make_user("wes", role_name="worker")
        disabled = user_service.set_status(db, user.id, "disabled")
        assert disabled.status == UserStatusEnum.disabled
        assert disabled.token_version == 1

        principal = Principal.from_user(disabled)
        assert not access_service.can_perform(db, principal, Resource.products, Action.view)
        with pytest.raises(AuthenticationError, match="disabled"):
            auth_service.authenticate(db, "wes", PASSWORD)

    def test_reenable_restores_role(self, db, make_user):
        user = make_user("wes", role_name="worker")
        user_service.set_status(db, user.id, UserStatusEnum.disabled)
        enabled = user_service.set_status(db, user.id, UserStatusEnum.active)
        assert enabled.status == UserStatusEnum.active
        assert enabled.role_name == "worker"
        assert enabled.token_version == 1

    def test_same_status_is_noop(self, db, make_user):
        user = make_user("wes", role_name="worker", status=UserStatusEnum.disabled)
        assert user_service.set_status(db, user.id, "disabled").token_version == 0

    def test_pending_cannot_be_activated_directly(self, db, code):
        user = _register(db, code)
        with pytest.raises(InvalidStatusTransitionError):
            user_service.set_status(db, user.id, "active")

    def test_rejected_registration_cannot_be_enabled(self, db, code):
        user = _register(db, code)
        user_service.set_status(db, user.id, "disabled")
        with pytest.raises(InvalidStatusTransitionError):
            user_service.set_status(db, user.id, "active")

    def test_unknown_status(self, db, make_user):
        user = make_user("wes", role_name="worker")
        with pytest.raises(InvalidStatusTransitionError):
            user_service.set_status(db, user.id, "retired")

    def test_admin_cannot_change_own_status(self, db, admin_principal):
        with pytest.raises(InvalidStatusTransitionError):
            user_service.set_status(db, admin_principal.id, "disabled", actor=admin_principal)
