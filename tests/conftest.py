from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import downloadgate.main as main_module
from downloadgate import models  # noqa: F401 - registers tables on Base.metadata
from downloadgate.config import settings
from downloadgate.database import Base, get_db
from downloadgate.main import app
from downloadgate.middleware.rate_limit import limiter

TEST_API_KEY = "test-api-key"


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """Create a test client with the test database and disabled rate limiting."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # Disable rate limiting for tests
    limiter.enabled = False

    # Point the startup table check at the test database
    original_engine = main_module.engine
    main_module.engine = db_session.get_bind()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True
    main_module.engine = original_engine


@pytest.fixture
def admin_headers():
    """X-API-Key header with the internal key configured for the test."""
    with patch.object(settings, "internal_api_key", TEST_API_KEY):
        yield {"X-API-Key": TEST_API_KEY}
