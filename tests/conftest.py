"""Shared pytest fixtures: in-memory SQLite, seeded roles, a TestClient."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ROLE_CACHE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"

from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import factory_rbac.models  # noqa: F401
from factory_rbac.core.security import create_access_token, hash_password
from factory_rbac.db.base import Base
from factory_rbac.db.seeds.seed_roles import seed_roles
from factory_rbac.db.session import get_db
from factory_rbac.main import app
from factory_rbac.models.organization import Department, Group
from factory_rbac.models.user import User, UserStatusEnum
from factory_rbac.services.permissions import Principal
from factory_rbac.services.role_cache import role_cache

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def _schema() -> Iterator[None]:
    Base.metadata.create_all(bind=engine)
    role_cache.clear()
    yield
    role_cache.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db() -> Iterator[Session]:
    session = TestingSessionLocal()
    seed_roles(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db: Session) -> Iterator[TestClient]:
    def _get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db: Session):
    """Insert a user directly, bypassing registration."""

    def _make(
        username: str,
        role_name: Optional[str] = None,
        status: UserStatusEnum = UserStatusEnum.active,
        department_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> User:
        user = User(
            username=username,
            username_lower=username.lower(),
            hashed_password=PASSWORD_HASH,
            status=status,
            role_name=role_name,
            department_id=department_id,
            group_id=group_id,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def admin(make_user) -> User:
    return make_user("boss", role_name="admin")


@pytest.fixture()
def admin_principal(admin: User) -> Principal:
    return Principal.from_user(admin)


@pytest.fixture()
def department(db: Session) -> Department:
    row = Department(name="Assembly")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture()
def group(db: Session) -> Group:
    row = Group(name="Night shift")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture()
def auth_headers():
    """Bearer headers for a user, minted the way login mints them."""

    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id), "tv": user.token_version or 0})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def session_factory():
    return TestingSessionLocal
