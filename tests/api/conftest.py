"""Fixtures for HTTP route tests: app, session override, bearer tokens."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from src.api.app import create_app
from src.db.session import get_async_session


@pytest.fixture(autouse=True)
def auth_settings(settings):
    """Route auth reads the test JWT and cron secrets."""
    with patch("src.api.auth.get_settings", return_value=settings):
        yield settings


@pytest.fixture
def mock_session():
    """Create a mock async session."""
    return AsyncMock()


@pytest.fixture
def app(mock_session):
    """Create a test app with the database session overridden."""
    app = create_app()
    app.dependency_overrides[get_async_session] = lambda: mock_session
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """HTTP client bound to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def token_for(settings):
    """Build bearer headers for a staff role."""

    def _headers(
        role: str,
        user_id: uuid.UUID | None = None,
        clinic_id: uuid.UUID | None = None,
    ) -> dict[str, str]:
        claims = {"sub": str(user_id or uuid.uuid4()), "role": role}
        if clinic_id is not None:
            claims["clinic_id"] = str(clinic_id)
        token = jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
        return {"Authorization": f"Bearer {token}"}

    return _headers
