"""Tests for the Retell voice-call service client."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.services.retell_client import (
    CALLER_NAME,
    RetellClient,
    build_dynamic_variables,
    normalize_call_status,
)
from src.shared.errors import ProviderError
from src.shared.types import CallStatus


@pytest.fixture
def retell_client() -> RetellClient:
    """Provide a RetellClient with a configured caller number."""
    return RetellClient(api_key="key_test", from_number="+15035550000")


def _mock_http(response: httpx.Response | None = None, side_effect=None):
    """Build an AsyncClient stand-in returning ``response`` from request()."""
    mock_http = AsyncMock()
    if side_effect is not None:
        mock_http.request.side_effect = side_effect
    else:
        mock_http.request.return_value = response
    mock_http.__aenter__ = AsyncMock(return_value=mock_http)
    mock_http.__aexit__ = AsyncMock(return_value=False)
    return mock_http


class TestBuildDynamicVariables:
    """Pure function: build_dynamic_variables."""

    def test_fallbacks(self) -> None:
        """Missing values use the agent prompt defaults."""
        result = build_dynamic_variables()
        assert result["patient_name"] == "Patient"
        assert result["doctor_name"] == "your doctor"
        assert result["clinic_name"] == "Medical Clinic"
        assert result["caller_name"] == CALLER_NAME

    def test_values_and_extras(self) -> None:
        """Provided values and extras pass through as strings."""
        result = build_dynamic_variables(patient_name="Jane", visit_count=3)
        assert result["patient_name"] == "Jane"
        assert result["visit_count"] == "3"


class TestNormalizeCallStatus:
    """Provider status mapping."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("ended", CallStatus.COMPLETED),
            ("completed", CallStatus.COMPLETED),
            ("no-answer", CallStatus.NO_ANSWER),
            ("dial_no_answer", CallStatus.NO_ANSWER),
            ("error", CallStatus.FAILED),
            ("dial_busy", CallStatus.FAILED),
            ("ongoing", CallStatus.SCHEDULED),
        ],
    )
    def test_known(self, raw: str, expected: CallStatus) -> None:
        """Known statuses map onto internal call statuses."""
        assert normalize_call_status(raw) == expected

    def test_unknown(self) -> None:
        """Unknown or empty statuses are None."""
        assert normalize_call_status("teleported") is None
        assert normalize_call_status(None) is None


class TestCreatePhoneCall:
    """Outbound call creation."""

    async def test_returns_call_id(self, retell_client: RetellClient) -> None:
        """create_phone_call returns Retell's call id and posts the payload."""
        response = httpx.Response(201, json={"call_id": "call_123", "call_status": "registered"})
        mock_http = _mock_http(response)
        with patch("src.services.retell_client.httpx.AsyncClient", return_value=mock_http):
            result = await retell_client.create_phone_call(
                to_number="+15035551234",
                script="Hello Jane",
                dynamic_variables={"patient_name": "Jane"},
                callback_url="https://followup.example.com/webhooks/voice",
            )
        assert result.call_id == "call_123"
        method, url = mock_http.request.call_args.args
        payload = mock_http.request.call_args.kwargs["json"]
        assert method == "POST"
        assert url.endswith("/v2/create-phone-call")
        assert payload["from_number"] == "+15035550000"
        assert payload["to_number"] == "+15035551234"
        assert payload["webhook_url"] == "https://followup.example.com/webhooks/voice"
        assert payload["metadata"]["script"] == "Hello Jane"
        assert payload["retell_llm_dynamic_variables"]["patient_name"] == "Jane"
        headers = mock_http.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer key_test"

    async def test_provider_message_surfaced(self, retell_client: RetellClient) -> None:
        """A 4xx response raises ProviderError with Retell's message."""
        response = httpx.Response(400, json={"message": "Invalid to_number"})
        with patch(
            "src.services.retell_client.httpx.AsyncClient", return_value=_mock_http(response),
        ):
            with pytest.raises(ProviderError) as exc_info:
                await retell_client.create_phone_call(to_number="+1", script="Hi")
        assert exc_info.value.message == "Invalid to_number"
        assert exc_info.value.status_code == 400

    async def test_status_fallback_message(self, retell_client: RetellClient) -> None:
        """A 5xx without a body message names the status."""
        response = httpx.Response(503, text="upstream down")
        with patch(
            "src.services.retell_client.httpx.AsyncClient", return_value=_mock_http(response),
        ):
            with pytest.raises(ProviderError, match="Retell API error: 503"):
                await retell_client.create_phone_call(to_number="+15035551234", script="Hi")

    async def test_timeout_not_retried(self, retell_client: RetellClient) -> None:
        """A timeout surfaces once as an unknown-outcome error."""
        mock_http = _mock_http(side_effect=httpx.ReadTimeout("slow"))
        with patch("src.services.retell_client.httpx.AsyncClient", return_value=mock_http):
            with pytest.raises(ProviderError, match="timed out"):
                await retell_client.create_phone_call(to_number="+15035551234", script="Hi")
        assert mock_http.request.await_count == 1

    async def test_network_error(self, retell_client: RetellClient) -> None:
        """Connection failures surface as ProviderError."""
        mock_http = _mock_http(side_effect=httpx.ConnectError("refused"))
        with patch("src.services.retell_client.httpx.AsyncClient", return_value=mock_http):
            with pytest.raises(ProviderError, match="No response received"):
                await retell_client.create_phone_call(to_number="+15035551234", script="Hi")


class TestResolveFromNumber:
    """Caller number fallback."""

    async def test_uses_first_account_number(self) -> None:
        """Without a configured number the first account number is used."""
        client = RetellClient(api_key="key_test")
        response = httpx.Response(200, json=[{"phone_number": "+15035550009"}])
        with patch(
            "src.services.retell_client.httpx.AsyncClient", return_value=_mock_http(response),
        ):
            assert await client.resolve_from_number() == "+15035550009"

    async def test_no_numbers(self) -> None:
        """An empty account raises a configuration hint."""
        client = RetellClient(api_key="key_test")
        response = httpx.Response(200, json=[])
        with patch(
            "src.services.retell_client.httpx.AsyncClient", return_value=_mock_http(response),
        ):
            with pytest.raises(ProviderError, match="No phone numbers available"):
                await client.resolve_from_number()


class TestGetCall:
    """Call status polling."""

    async def test_completed_call(self, retell_client: RetellClient) -> None:
        """Duration is derived from timestamps in whole seconds."""
        response = httpx.Response(
            200,
            json={
                "call_id": "call_123",
                "call_status": "ended",
                "start_timestamp": 1_700_000_000_000,
                "end_timestamp": 1_700_000_095_500,
                "transcript": "Agent: hi",
                "recording_url": "https://rec/123.wav",
            },
        )
        with patch(
            "src.services.retell_client.httpx.AsyncClient", return_value=_mock_http(response),
        ):
            result = await retell_client.get_call("call_123")
        assert result.status == "ended"
        assert result.duration == 95
        assert result.transcript == "Agent: hi"

    async def test_no_answer_reason(self, retell_client: RetellClient) -> None:
        """dial_no_answer replaces the generic ended status."""
        response = httpx.Response(
            200,
            json={"call_status": "ended", "disconnection_reason": "dial_no_answer"},
        )
        with patch(
            "src.services.retell_client.httpx.AsyncClient", return_value=_mock_http(response),
        ):
            result = await retell_client.get_call("call_123")
        assert result.status == "dial_no_answer"
        assert result.duration is None
