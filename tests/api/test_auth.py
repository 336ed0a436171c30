"""Tests for bearer-token auth, role gates, and the cron secret."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from jose import jwt

from src.api.auth import AuthError, decode_user_token
from src.config.settings import Settings
from src.shared.response_models import FollowupRunResult
from src.shared.types import UserRole


class TestDecodeUserToken:
    """decode_user_token: claims to CurrentUser."""

    def test_valid_claims(self, settings) -> None:
        """sub, role, and clinic_id become the current user."""
        user_id, clinic_id = uuid.uuid4(), uuid.uuid4()
        token = jwt.encode(
            {"sub": str(user_id), "role": "clinic", "clinic_id": str(clinic_id)},
            settings.jwt_secret_key,
            algorithm="HS256",
        )

        user = decode_user_token(token)

        assert user.user_id == user_id
        assert user.role == UserRole.CLINIC
        assert user.clinic_id == clinic_id

    def test_wrong_secret(self) -> None:
        """Tokens signed with another key are rejected."""
        token = jwt.encode({"sub": str(uuid.uuid4()), "role": "admin"}, "other", "HS256")
        with pytest.raises(AuthError) as exc_info:
            decode_user_token(token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid token"

    def test_unknown_role(self, settings) -> None:
        """A role outside admin/clinic/doctor is an invalid token."""
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "role": "patient"},
            settings.jwt_secret_key,
            algorithm="HS256",
        )
        with pytest.raises(AuthError, match="Invalid token"):
            decode_user_token(token)

    def test_secret_not_configured(self) -> None:
        """Without a signing key no token is accepted."""
        with patch(
            "src.api.auth.get_settings",
            return_value=Settings(jwt_secret_key=""),
        ):
            with pytest.raises(AuthError) as exc_info:
                decode_user_token("anything")
        assert exc_info.value.detail == "Authentication not configured"


class TestStaffRoutes:
    """Bearer and role enforcement on /api routes."""

    async def test_missing_token(self, client) -> None:
        """Requests without a token get 401 and a bearer challenge."""
        response = await client.get("/api/patients/cold-leads")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_garbage_token(self, client) -> None:
        """Malformed tokens get 401."""
        response = await client.get(
            "/api/patients/cold-leads",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid token"

    async def test_role_gate(self, client, token_for) -> None:
        """Doctors cannot schedule call batches."""
        response = await client.post(
            "/api/calls/schedule",
            json={},
            headers=token_for("doctor"),
        )
        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "Forbidden"}


class TestCronSecret:
    """Cron-secret enforcement on /workers routes."""

    async def test_missing_secret(self, client) -> None:
        """No bearer header is 401."""
        response = await client.post("/workers/followups")
        assert response.status_code == 401

    async def test_wrong_secret(self, client) -> None:
        """A mismatched secret is 401."""
        response = await client.post(
            "/workers/followups",
            headers={"Authorization": "Bearer wrong"},
        )
        assert response.status_code == 401

    async def test_staff_token_is_not_a_cron_secret(self, client, token_for) -> None:
        """A valid staff JWT does not open the worker routes."""
        response = await client.post("/workers/followups", headers=token_for("admin"))
        assert response.status_code == 401

    async def test_correct_secret(self, client) -> None:
        """The configured cron secret is accepted."""
        with patch(
            "src.api.worker_routes.handle_followup_job",
            new_callable=AsyncMock,
            return_value=FollowupRunResult(success=True, message="ok"),
        ):
            response = await client.get(
                "/workers/followups",
                headers={"Authorization": "Bearer test-cron-secret"},
            )
        assert response.status_code == 200
