"""Shared fixtures: in-memory SQLite database, app client and seeded users."""
import os

# Importing leadtracker.main builds a module-level app from the environment
os.environ.setdefault("DATABASE_URL", "sqlite://")

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from leadtracker.auth import hash_password, permissions_for_role
from leadtracker.config import Settings
from leadtracker.database import create_db_engine, create_session_factory, init_db
from leadtracker.main import create_app
from leadtracker.models.db_models import UserDB
from leadtracker.services.geolocation import GeoLocator


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", jwt_secret_key="test-secret-key")


@pytest.fixture
def db():
    """A session on a fresh in-memory database."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def app(settings):
    return create_app(settings, geolocator=GeoLocator())


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def app_db(app, client):
    """Session on the app's database, for seeding data behind the API."""
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def make_user(db, username: str, role: str = "analyst", password: str = "password123", is_active: bool = True) -> UserDB:
    user = UserDB(
        id=str(uuid4()),
        username=username,
        email=f"{username}@example.com",
        password_hash=hash_password(password),
        role=role,
        permissions=permissions_for_role(role),
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def login_headers(client, username: str, password: str = "password123") -> dict:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def full_record(**overrides):
    """A record with every positively-scored field filled in."""
    from datetime import datetime
    from leadtracker.models.records import Geolocation, SubmissionRecord

    values = dict(
        fname="Jane",
        lname="Doe",
        email="jane@example.com",
        phone="5551234567",
        address="1 Main St",
        city="Austin",
        state="TX",
        zip="73301",
        gender="Female",
        date_of_birth=datetime(1990, 1, 2),
        diagnosis_year=datetime(2021, 6, 1),
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36",
        trusted_form_cert_url="https://cert.trustedform.com/abc",
        geolocation=Geolocation(country="United States", country_code="US", region="Texas",
                                city="Austin", latitude=30.27, longitude=-97.74),
    )
    values.update(overrides)
    return SubmissionRecord(**values)
