"""Shared test fixtures for the clinic follow-up test suite."""

import uuid
from datetime import UTC, datetime

import pytest

from src.config.settings import Settings
from src.db.models import Clinic, Patient, User
from src.db.settings_store import ClinicSettings
from src.shared.types import PatientStatus

NOW = datetime(2026, 3, 16, 15, 0, tzinfo=UTC)


@pytest.fixture
def settings() -> Settings:
    """Provide test settings with safe defaults.

    Returns:
        Settings configured for testing (no real API calls).
    """
    return Settings(
        db_password="test-password",
        db_name="clinic_followup_test",
        public_base_url="https://followup.example.com",
        jwt_secret_key="test-jwt-secret",
        cron_secret="test-cron-secret",
        clinic_timezone="UTC",
    )


@pytest.fixture
def clinic_settings() -> ClinicSettings:
    """Provide fully configured clinic settings.

    Returns:
        ClinicSettings with both providers configured.
    """
    return ClinicSettings(
        retell_api_key="key_test",
        retell_from_number="+15035550000",
        twilio_account_sid="ACtest123",
        twilio_auth_token="test-token",
        twilio_phone_number="+15035550001",
        whatsapp_enabled=True,
        message_template="Hi {{patient_name}}, see Dr. {{doctor_name}} on {{appointment_date}}.",
    )


def make_patient(**overrides) -> Patient:
    """Build a transient Patient with sensible defaults.

    Args:
        **overrides: Column values to override.

    Returns:
        Patient not attached to any session.
    """
    values = {
        "patient_id": uuid.uuid4(),
        "name": "Jane Doe",
        "phone": "+15035551234",
        "phone_digits": "15035551234",
        "call_script": "Hello {{patient_name}}, this is {{caller_name}}.",
        "status": PatientStatus.PENDING.value,
        "followup_calls": 0,
        "followup_messages": 0,
        "message_attempts": 0,
        "call_attempts": 0,
        "appointment_date": datetime(2026, 3, 17, 10, 0, tzinfo=UTC),
        "treatment": "annual checkup",
    }
    values.update(overrides)
    patient = Patient(**values)
    patient.assigned_doctor = User(user_id=uuid.uuid4(), name="Smith", email="smith@example.com")
    patient.clinic = Clinic(clinic_id=uuid.uuid4(), name="Riverside Clinic", phone="+15035559999")
    return patient


@pytest.fixture
def patient_factory():
    """Provide the transient Patient builder."""
    return make_patient


@pytest.fixture
def now() -> datetime:
    """Fixed run time: Monday 2026-03-16 15:00 UTC."""
    return NOW
