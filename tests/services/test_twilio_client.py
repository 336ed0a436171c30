"""Tests for the Twilio service client."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from twilio.base.exceptions import TwilioRestException

from src.services.twilio_client import (
    TwilioClient,
    empty_twiml,
    format_whatsapp_address,
    normalize_message_status,
    strip_whatsapp_prefix,
)
from src.shared.errors import ProviderError
from src.shared.types import MessageStatus


@pytest.fixture
def twilio_client() -> TwilioClient:
    """Provide a TwilioClient with test credentials."""
    return TwilioClient(
        account_sid="ACtest123",
        auth_token="test-token",
        from_number="+15035550000",
        status_callback="https://followup.example.com/webhooks/twilio",
    )


class TestSendWhatsapp:
    """WhatsApp sending via Twilio."""

    async def test_returns_sid(self, twilio_client: TwilioClient) -> None:
        """send_whatsapp returns the message SID and uses whatsapp: addresses."""
        mock_message = MagicMock()
        mock_message.sid = "SM1234567890"
        with patch.object(twilio_client, "_client") as mock_client:
            mock_client.messages.create.return_value = mock_message
            result = await twilio_client.send_whatsapp(to="(503) 555-1234", body="Hello")
        assert result == "SM1234567890"
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["to"] == "whatsapp:+15035551234"
        assert kwargs["from_"] == "whatsapp:+15035550000"
        assert kwargs["status_callback"] == "https://followup.example.com/webhooks/twilio"

    async def test_rest_error_normalized(self, twilio_client: TwilioClient) -> None:
        """Twilio REST errors become ProviderError with the provider message."""
        error = TwilioRestException(400, "https://api.twilio.com", msg="Invalid 'To' number")
        with patch.object(twilio_client, "_client") as mock_client:
            mock_client.messages.create.side_effect = error
            with pytest.raises(ProviderError) as exc_info:
                await twilio_client.send_whatsapp(to="+15035551234", body="Hello")
        assert exc_info.value.provider == "twilio"
        assert exc_info.value.message == "Invalid 'To' number"
        assert exc_info.value.status_code == 400

    async def test_request_runs_off_event_loop(self, twilio_client: TwilioClient) -> None:
        """The blocking SDK request is handed to a worker thread."""
        with patch(
            "src.services.twilio_client.asyncio.to_thread",
            new_callable=AsyncMock,
            return_value="SM42",
        ) as to_thread:
            result = await twilio_client.send_whatsapp(to="+15035551234", body="Hello")
        assert result == "SM42"
        assert to_thread.call_args.args == (twilio_client._create,)
        assert to_thread.call_args.kwargs["to"] == "whatsapp:+15035551234"


class TestHelpers:
    """Address and status helpers."""

    def test_strip_prefix(self) -> None:
        """The whatsapp: prefix is removed."""
        assert strip_whatsapp_prefix("whatsapp:+15035551234") == "+15035551234"
        assert strip_whatsapp_prefix("+15035551234") == "+15035551234"

    def test_format_address_idempotent(self) -> None:
        """Formatting an address twice does not double the prefix."""
        once = format_whatsapp_address("5035551234")
        assert format_whatsapp_address(once) == once == "whatsapp:+15035551234"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("queued", MessageStatus.QUEUED),
            ("sent", MessageStatus.SENT),
            ("delivered", MessageStatus.DELIVERED),
            ("read", MessageStatus.READ),
            ("undelivered", MessageStatus.FAILED),
            ("received", None),
        ],
    )
    def test_normalize_status(self, raw: str, expected: MessageStatus | None) -> None:
        """Twilio statuses map onto internal delivery states."""
        assert normalize_message_status(raw) == expected

    def test_empty_twiml(self) -> None:
        """The acknowledgement is an empty Response envelope."""
        body = empty_twiml()
        assert "<Response" in body
        assert "<Message" not in body
