import logging
from importlib import metadata

import pytest
from fastapi.testclient import TestClient
from typer.testing import CliRunner

from factory_rbac.cli import app as cli_app
from factory_rbac.core.config import settings
from factory_rbac.db.seeds.seed_admin import seed_admin
from factory_rbac.db.seeds.seed_roles import seed_roles
from factory_rbac.main import app
from factory_rbac.models.user import User, UserStatusEnum
from factory_rbac.services.access_service import access_service
from factory_rbac.services.permissions import Action, Principal, Resource
from factory_rbac.services.role_service import role_service

runner = CliRunner()


def test_seed_roles_is_idempotent(db):
    assert seed_roles(db) == 0
    roles = {r.name: r for r in role_service.list_roles(db)}
    assert set(roles) == {"admin", "worker", "operator", "leader"}
    assert roles["admin"].is_built_in
    assert not roles["worker"].is_built_in


def test_seeded_defaults(db, make_user):
    operator = Principal.from_user(make_user("otto", role_name="operator"))
    assert access_service.can_perform(db, operator, Resource.reports, Action.edit)
    assert not access_service.can_perform(db, operator, Resource.products, Action.view)

    leader = Principal.from_user(make_user("lena", role_name="leader"))
    assert access_service.can_perform(db, leader, Resource.tasks, Action.edit)
    assert not access_service.can_perform(db, leader, Resource.reports, Action.edit)


def test_seed_admin(db):
    assert seed_admin(db)
    assert not seed_admin(db)
    user = db.query(User).filter(User.username_lower == "admin").one()
    assert user.status == UserStatusEnum.active
    assert user.role_name == "admin"


@pytest.fixture()
def cli_db(db, session_factory, monkeypatch):
    monkeypatch.setattr("factory_rbac.db.session.SessionLocal", session_factory)
    return db


def test_cli_roles_list(cli_db):
    result = runner.invoke(cli_app, ["roles", "list"])
    assert result.exit_code == 0, result.output
    assert "admin (built-in) [all]" in result.output
    assert "leader [department]" in result.output


def test_cli_approve(cli_db, make_user, department):
    make_user("nina", status=UserStatusEnum.pending)
    result = runner.invoke(
        cli_app, ["users", "approve", "NINA", "--role", "operator", "--department", str(department.id)],
    )
    assert result.exit_code == 0, result.output
    cli_db.expire_all()
    user = cli_db.query(User).filter(User.username_lower == "nina").one()
    assert user.status == UserStatusEnum.active
    assert user.role_name == "operator"
    assert user.department_id == department.id


def test_cli_approve_unknown_role(cli_db, make_user):
    make_user("nina", status=UserStatusEnum.pending)
    result = runner.invoke(cli_app, ["users", "approve", "nina", "--role", "ghost"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_cli_serve_refuses_several_workers_with_memory_cache(monkeypatch):
    started = []
    monkeypatch.setattr("uvicorn.run", lambda *args, **kwargs: started.append(kwargs))
    result = runner.invoke(cli_app, ["serve", "--workers", "3"])
    assert result.exit_code == 1
    assert "ROLE_CACHE_BACKEND=redis" in result.output
    assert started == []


def test_cli_serve_single_worker(monkeypatch):
    started = []
    monkeypatch.setattr("uvicorn.run", lambda *args, **kwargs: started.append(kwargs))
    result = runner.invoke(cli_app, ["serve", "--port", "9000"])
    assert result.exit_code == 0, result.output
    assert started[0]["port"] == 9000
    assert started[0]["workers"] == 1


def test_startup_warns_about_memory_cache_with_several_workers(monkeypatch, caplog):
    monkeypatch.setattr(settings, "WORKERS", 2)
    with caplog.at_level(logging.WARNING, logger="factory_rbac"):
        with TestClient(app):
            pass
    assert any("ROLE_CACHE_BACKEND=redis" in r.getMessage() for r in caplog.records)


def test_httpx_is_only_required_by_the_test_extra():
    requirements = metadata.requires("factory-rbac") or []
    httpx = [r for r in requirements if r.startswith("httpx")]
    assert httpx
    assert all('extra == "test"' in r for r in httpx)
