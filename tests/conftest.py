"""
Pytest configuration and fixtures for the member import tests.

Every test runs against a private in-memory SQLite database so the suite
needs no external services. SKIP_DB_INIT keeps the app lifespan from
reaching for the configured DATABASE_URL.
"""

import os

os.environ["SKIP_DB_INIT"] = "1"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from member_import.db.forms import create_community_with_form, init_db
from member_import.db.session import get_db
from member_import.domain.imports.models import QuestionDefinition
from member_import.main import app


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def community(db_session):
    """A community whose form only asks for a required 'Best email'."""
    return create_community_with_form(
        db_session,
        "Test Community",
        questions=[QuestionDefinition(id="q_email", label="Best email", required=True)],
    )


@pytest.fixture
def client(session_factory):
    """TestClient whose get_db dependency hands out sessions on the test database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    original_overrides = app.dependency_overrides.copy()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = original_overrides
