"""Shared fixtures: in-memory SQLite session and a TestClient bound to it."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FHIR_BASE_URL"] = "http://test/fhir"
os.environ["AUTH_URL"] = "http://test/auth"
os.environ["ENVIRONMENT"] = "test"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from clinic_fhir.main import app  # noqa: E402
from clinic_fhir.models.database import Base, SessionLocal, engine, get_db  # noqa: E402

BASE_URL = "http://test/fhir"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def _override_get_db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
