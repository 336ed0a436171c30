"""Seed the database with demo data for an end-to-end follow-up run.

Creates one clinic, an admin and a doctor, the clinic settings row, and
a handful of patients spread across the lead statuses so that a single
follow-up run exercises messaging, calling, and cold-lead promotion.

Usage:
    python -m scripts.seed_demo

All data is synthetic. Provider credentials are read from the
environment (``DEMO_RETELL_API_KEY`` and friends) and left blank when
unset, in which case the follow-up run reports a configuration error.
"""

import asyncio
import logging
import os
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config.settings import get_settings
from src.db.models import Base, Clinic, User
from src.db.postgres import create_patient
from src.db.settings_store import upsert_setting
from src.shared.schemas import PatientCreate
from src.shared.types import PatientStatus, UserRole

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_CLINIC = {
    "name": "Riverside Family Clinic",
    "phone": "+15035559000",
    "address": "1200 NW Riverside Dr, Portland, OR 97209",
}

DEMO_USERS = [
    {"name": "Clinic Admin", "email": "admin@riverside.example.com", "role": UserRole.ADMIN},
    {"name": "Lopez", "email": "lopez@riverside.example.com", "role": UserRole.DOCTOR},
]

DEMO_CALL_SCRIPT = (
    "Hi {{patient_name}}, this is {{caller_name}} from {{clinic_name}}. "
    "I'm calling about your appointment with Dr. {{doctor_name}} on "
    "{{appointment_date}}. Can you confirm you'll be able to make it?"
)

DEMO_SETTINGS = {
    "call_start_time": "09:00",
    "call_end_time": "17:00",
    "max_calls_per_day": 25,
    "max_followup_calls": 3,
    "max_followup_messages": 2,
    "days_before_followup": 1,
    "send_message_before_call": True,
}

# (name, phone, days until appointment, status, calls, messages)
DEMO_PATIENTS = [
    ("Eleanor Vasquez", "+15035559101", 1, PatientStatus.PENDING, 0, 0),
    ("Marcus Chen", "+15035559102", 2, PatientStatus.NOT_ANSWERED, 1, 1),
    ("Priya Ramirez", "+15035559103", 1, PatientStatus.PENDING, 0, 1),
    ("Robert Kim", "+15035559104", 3, PatientStatus.NOT_ANSWERED, 3, 2),
    ("Dana Okafor", "+15035559105", 5, PatientStatus.BOOKED, 1, 0),
]


async def _seed_clinic(session: AsyncSession) -> Clinic:
    """Insert the demo clinic if it doesn't already exist."""
    result = await session.execute(select(Clinic).where(Clinic.name == DEMO_CLINIC["name"]))
    existing = result.scalar_one_or_none()
    if existing:
        logger.info("clinic already exists: %s", existing.name)
        return existing
    clinic = Clinic(clinic_id=uuid.uuid4(), created_at=datetime.now(UTC), **DEMO_CLINIC)
    session.add(clinic)
    await session.flush()
    logger.info("created clinic: %s", clinic.name)
    return clinic


async def _seed_user(session: AsyncSession, data: dict, clinic: Clinic) -> User:
    """Insert a demo user if the email is not taken."""
    result = await session.execute(select(User).where(User.email == data["email"]))
    existing = result.scalar_one_or_none()
    if existing:
        return existing
    user = User(
        user_id=uuid.uuid4(),
        name=data["name"],
        email=data["email"],
        role=data["role"].value,
        clinic_id=clinic.clinic_id,
        created_at=datetime.now(UTC),
    )
    session.add(user)
    await session.flush()
    logger.info("created user: %s (%s)", user.email, user.role)
    return user


def _provider_settings() -> dict:
    """Provider credentials from the environment; blank when unset."""
    return {
        "retell_api_key": os.environ.get("DEMO_RETELL_API_KEY", ""),
        "retell_from_number": os.environ.get("DEMO_RETELL_FROM_NUMBER", ""),
        "twilio_account_sid": os.environ.get("DEMO_TWILIO_ACCOUNT_SID", ""),
        "twilio_auth_token": os.environ.get("DEMO_TWILIO_AUTH_TOKEN", ""),
        "twilio_phone_number": os.environ.get("DEMO_TWILIO_PHONE_NUMBER", ""),
        "whatsapp_enabled": bool(os.environ.get("DEMO_TWILIO_ACCOUNT_SID")),
    }


async def seed_all(session: AsyncSession) -> dict:
    """Seed all demo data.

    Args:
        session: Active database session.

    Returns:
        Dict with created record counts and the demo clinic ID.
    """
    clinic = await _seed_clinic(session)
    admin, doctor = [await _seed_user(session, data, clinic) for data in DEMO_USERS]
    await upsert_setting(
        session,
        updated_by_id=admin.user_id,
        **DEMO_SETTINGS,
        **_provider_settings(),
    )

    now = datetime.now(UTC)
    created = 0
    for name, phone, days_out, status, calls, messages in DEMO_PATIENTS:
        patient = await create_patient(
            session,
            PatientCreate(
                name=name,
                phone=phone,
                call_script=DEMO_CALL_SCRIPT,
                appointment_date=(now + timedelta(days=days_out)).replace(
                    hour=10, minute=0, second=0, microsecond=0,
                ),
                treatment="annual checkup",
                assigned_doctor_id=doctor.user_id,
                clinic_id=clinic.clinic_id,
            ),
            added_by_id=admin.user_id,
        )
        patient.status = status.value
        patient.followup_calls = calls
        patient.followup_messages = messages
        patient.message_attempts = messages
        patient.call_attempts = calls
        created += 1

    await session.flush()
    logger.info("=== DEMO SEED COMPLETE ===")
    logger.info("Demo clinic: %s (%s)", clinic.name, clinic.clinic_id)
    logger.info("Admin user_id: %s", admin.user_id)
    return {
        "clinic_id": str(clinic.clinic_id),
        "users": len(DEMO_USERS),
        "patients": created,
    }


async def main() -> None:
    """Run the seed script against the configured database."""
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        result = await seed_all(session)
        await session.commit()
        logger.info("Seed result: %s", result)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
