"""
pytest configuration – point the service at a throwaway SQLite file, create
tables once per run, and give every test a fresh app (and so a fresh login
limiter) plus empty audit/user tables.
"""
import os

os.environ.setdefault("SHOPADMIN_DATABASE_URL", "sqlite:///./test_shopadmin.db")
os.environ.setdefault("SHOPADMIN_LOG_FORMAT", "text")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete

from shopadmin.auth.core import hash_password
from shopadmin.auth.seed import seed_admin
from shopadmin.database import Base, engine, db_session
from shopadmin import models  # noqa: F401 – registers ORM mappings with Base.metadata
from shopadmin.models import LoginAttempt, User
from shopadmin.main import create_app
from shopadmin.rate_limit import limiter

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_state():
    """Empty audit/user tables, re-seed the admin and reset slowapi counters."""
    with db_session() as session:
        session.execute(delete(LoginAttempt))
        session.execute(delete(User))
    seed_admin()
    limiter.reset()
    yield


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        yield c


@pytest.fixture
def make_user():
    def _make(
        email: str = "jane@example.com",
        password: str = "secret123",
        is_active: bool = True,
        role: str = "admin",
    ) -> int:
        with db_session() as session:
            user = User(
                email=email,
                password_hash=hash_password(password),
                first_name="Jane",
                last_name="Doe",
                role=role,
                is_active=is_active,
            )
            session.add(user)
            session.flush()
            return user.id
    return _make


@pytest.fixture
def admin_client(client):
    """The shared client, logged in as the seeded admin from its own IP."""
    resp = client.post(
        "/api/auth/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        headers={"X-Forwarded-For": "192.0.2.200"},
    )
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    return client
