"""Tests for outbound dispatch helpers."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.db.settings_store import ClinicSettings
from src.followup.dispatch import (
    build_messaging_client,
    build_voice_client,
    patient_variables,
    place_patient_call,
    send_patient_message,
)
from src.services.retell_client import CallResult
from src.shared.errors import ConfigurationError, ProviderError
from src.shared.types import TemplateType


class TestBuildClients:
    """Adapter construction from clinic settings."""

    def test_voice_requires_api_key(self, settings) -> None:
        """A missing Retell key is a configuration error."""
        with pytest.raises(ConfigurationError, match="Retell API key"):
            build_voice_client(ClinicSettings(), settings)

    def test_voice_client_uses_settings(self, clinic_settings, settings) -> None:
        """The client carries the clinic key and caller number."""
        client = build_voice_client(clinic_settings, settings)
        assert client.api_key == "key_test"
        assert client.from_number == "+15035550000"

    def test_messaging_requires_whatsapp_enabled(self, settings) -> None:
        """Disabled WhatsApp is a configuration error even with credentials."""
        clinic = ClinicSettings(
            twilio_account_sid="ACtest123",
            twilio_auth_token="test-token",
            twilio_phone_number="+15035550001",
        )
        with pytest.raises(ConfigurationError, match="WhatsApp"):
            build_messaging_client(clinic, settings)

    def test_messaging_status_callback(self, clinic_settings, settings) -> None:
        """Delivery callbacks point at the public Twilio webhook."""
        client = build_messaging_client(clinic_settings, settings)
        assert client.status_callback == "https://followup.example.com/webhooks/twilio"


class TestPatientVariables:
    """Template variables derived from a patient."""

    def test_loaded_relations(self, patient_factory) -> None:
        """Doctor and clinic names come from the loaded relations."""
        variables = patient_variables(patient_factory())
        assert variables["patient_name"] == "Jane Doe"
        assert variables["doctor_name"] == "Smith"
        assert variables["clinic_name"] == "Riverside Clinic"
        assert variables["appointment_date"] == "Tuesday, March 17 at 10:00 AM"

    def test_missing_relations_fall_back(self, patient_factory) -> None:
        """Unassigned patients still render with generic values."""
        patient = patient_factory(appointment_date=None)
        patient.assigned_doctor = None
        patient.clinic = None
        variables = patient_variables(patient)
        assert variables["doctor_name"]
        assert variables["clinic_name"]
        assert "{{" not in variables["appointment_date"]


class TestSendPatientMessage:
    """send_patient_message: render, send, record."""

    async def test_sends_and_records(self, patient_factory, now: datetime) -> None:
        """The rendered body is sent and stored with the provider sid."""
        patient = patient_factory()
        session = AsyncMock()
        messaging = AsyncMock()
        messaging.send_whatsapp.return_value = "SM123"
        stored = MagicMock(message_id="m-1", template_type="follow_up")

        with (
            patch(
                "src.followup.dispatch.create_message",
                new_callable=AsyncMock,
                return_value=stored,
            ) as create,
            patch(
                "src.followup.dispatch.record_message_attempt",
                new_callable=AsyncMock,
            ) as record,
            patch("src.followup.dispatch.log_event", new_callable=AsyncMock) as log,
        ):
            message = await send_patient_message(
                session,
                patient,
                messaging=messaging,
                template="Hi {{patient_name}}, see Dr. {{doctor_name}}.",
                template_type=TemplateType.FOLLOW_UP,
                now=now,
                is_followup=True,
                followup_attempt=2,
            )

        assert message is stored
        messaging.send_whatsapp.assert_awaited_once_with(
            to="+15035551234", body="Hi Jane Doe, see Dr. Smith."
        )
        kwargs = create.call_args.kwargs
        assert kwargs["external_message_id"] == "SM123"
        assert kwargs["template_type"] == "follow_up"
        assert kwargs["is_followup"] is True
        assert kwargs["followup_attempt"] == 2
        record.assert_awaited_once_with(session, patient.patient_id, sent_at=now)
        assert log.call_args.kwargs["event_type"] == "message_dispatched"
        assert log.call_args.kwargs["idempotency_key"] == "message_dispatched:SM123"

    async def test_provider_error_records_nothing(self, patient_factory, now) -> None:
        """A rejected send leaves no message row behind."""
        messaging = AsyncMock()
        messaging.send_whatsapp.side_effect = ProviderError("twilio", "twilio down")

        with patch("src.followup.dispatch.create_message", new_callable=AsyncMock) as create:
            with pytest.raises(ProviderError, match="twilio down"):
                await send_patient_message(
                    AsyncMock(),
                    patient_factory(),
                    messaging=messaging,
                    template="Hi",
                    template_type=None,
                    now=now,
                )
        create.assert_not_awaited()


class TestPlacePatientCall:
    """place_patient_call: render the script, call, record."""

    async def test_places_and_records(self, patient_factory, now: datetime) -> None:
        """The call goes to the E.164 number with a fully rendered script."""
        patient = patient_factory(phone="503-555-1234")
        session = AsyncMock()
        voice = AsyncMock()
        voice.create_phone_call.return_value = CallResult(call_id="call_1", status="registered")
        stored = MagicMock(call_id="c-1")

        with (
            patch(
                "src.followup.dispatch.create_call",
                new_callable=AsyncMock,
                return_value=stored,
            ) as create,
            patch(
                "src.followup.dispatch.record_call_attempt",
                new_callable=AsyncMock,
            ) as record,
            patch("src.followup.dispatch.log_event", new_callable=AsyncMock) as log,
        ):
            call = await place_patient_call(
                session,
                patient,
                voice=voice,
                callback_url="https://followup.example.com/webhooks/voice",
                now=now,
            )

        assert call is stored
        kwargs = voice.create_phone_call.call_args.kwargs
        assert kwargs["to_number"] == "+15035551234"
        assert kwargs["script"] == "Hello Jane Doe, this is Mayra."
        assert kwargs["dynamic_variables"]["clinic_phone"] == "+15035559999"
        assert kwargs["callback_url"].endswith("/webhooks/voice")
        assert create.call_args.kwargs["external_call_id"] == "call_1"
        assert create.call_args.kwargs["is_followup"] is False
        record.assert_awaited_once_with(session, patient.patient_id, called_at=now)
        assert log.call_args.kwargs["event_type"] == "call_dispatched"

    async def test_provider_error_propagates(self, patient_factory, now) -> None:
        """Rejected calls surface as ProviderError with nothing recorded."""
        voice = AsyncMock()
        voice.create_phone_call.side_effect = ProviderError("retell", "Retell API error")

        with patch("src.followup.dispatch.create_call", new_callable=AsyncMock) as create:
            with pytest.raises(ProviderError):
                await place_patient_call(
                    AsyncMock(),
                    patient_factory(),
                    voice=voice,
                    callback_url="https://followup.example.com/webhooks/voice",
                    now=now,
                )
        create.assert_not_awaited()
