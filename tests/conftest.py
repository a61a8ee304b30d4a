import os

# Cheap hashes and an isolated database for the whole test session
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import dormhotel.models  # noqa: F401
from dormhotel.api import app
from dormhotel.auth import password_hasher
from dormhotel.database import Base, get_db
from dormhotel.services import AccountService, UserStore

ADMIN_EMAIL = "admin@thedormhotel.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture
def engine():
    """Provide an isolated in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_local(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_local):
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_local):
    def override_get_db():
        session = session_local()
        try:
            yield session
        finally:
            session.close()

    seed_session = session_local()
    AccountService(UserStore(seed_session), password_hasher).seed_admin(
        ADMIN_EMAIL, ADMIN_PASSWORD
    )
    seed_session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def login_headers(client, email, password):
    """Log in and return a bearer header, leaving the client cookie jar empty."""
    resp = client.post("/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    token = resp.cookies["token"]
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}


def register_and_login(client, email, password="pw12345"):
    resp = client.post("/register", json={"email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return login_headers(client, email, password)


def booking_payload(name="A", email="a@x.com", offset=1, nights=2, room_type="double"):
    check_in = date.today() + timedelta(days=offset)
    return {
        "name": name,
        "email": email,
        "check_in": check_in.isoformat(),
        "check_out": (check_in + timedelta(days=nights)).isoformat(),
        "room_type": room_type,
    }
