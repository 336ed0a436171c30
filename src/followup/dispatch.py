"""Outbound dispatch: render a template, hand it to a provider, record it.

Each helper performs exactly one provider request. Provider failures
propagate as ``ProviderError`` so batch callers can isolate them per
patient and ad-hoc callers can surface them verbatim.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, time
from typing import TYPE_CHECKING

from src.config.settings import Settings, get_settings
from src.db.events import log_event
from src.db.postgres import (
    create_call,
    create_message,
    record_call_attempt,
    record_message_attempt,
)
from src.services.retell_client import RetellClient, build_dynamic_variables
from src.services.twilio_client import TwilioClient
from src.shared.comms import build_template_variables, format_appointment_date, render
from src.shared.types import Channel, TemplateType
from src.shared.validators import to_e164

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from src.db.models import Call, Message, Patient
    from src.db.settings_store import ClinicSettings

logger = logging.getLogger(__name__)


def start_of_clinic_day(now: datetime, app_settings: Settings) -> datetime:
    """Return midnight of the current clinic day as an aware datetime."""
    local = now.astimezone(app_settings.clinic_tz)
    return datetime.combine(local.date(), time.min, tzinfo=app_settings.clinic_tz)


def build_voice_client(
    settings: ClinicSettings,
    app_settings: Settings | None = None,
) -> RetellClient:
    """Create the voice adapter from clinic settings.

    Args:
        settings: Effective clinic settings.
        app_settings: Process settings (defaults to ``get_settings()``).

    Returns:
        Configured RetellClient.

    Raises:
        ConfigurationError: If the Retell API key is missing.
    """
    settings.require_voice()
    app_settings = app_settings or get_settings()
    return RetellClient(
        api_key=settings.retell_api_key,
        from_number=settings.retell_from_number,
        base_url=app_settings.retell_api_url,
        timeout=app_settings.retell_timeout_seconds,
    )


def build_messaging_client(
    settings: ClinicSettings,
    app_settings: Settings | None = None,
) -> TwilioClient:
    """Create the messaging adapter from clinic settings.

    Args:
        settings: Effective clinic settings.
        app_settings: Process settings (defaults to ``get_settings()``).

    Returns:
        Configured TwilioClient.

    Raises:
        ConfigurationError: If WhatsApp is disabled or credentials are missing.
    """
    settings.require_messaging()
    app_settings = app_settings or get_settings()
    return TwilioClient(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_phone_number,
        status_callback=f"{app_settings.public_base_url.rstrip('/')}/webhooks/twilio",
    )


def patient_variables(patient: Patient) -> dict[str, str]:
    """Template variables for a patient.

    Expects ``assigned_doctor`` and ``clinic`` to be loaded.

    Args:
        patient: Patient record.

    Returns:
        Placeholder values with fallbacks applied.
    """
    return build_template_variables(
        patient_name=patient.name,
        doctor_name=patient.assigned_doctor.name if patient.assigned_doctor else None,
        appointment_date=patient.appointment_date,
        clinic_name=patient.clinic.name if patient.clinic else None,
        appointment_reason=patient.treatment,
    )


async def send_patient_message(
    session: AsyncSession,
    patient: Patient,
    *,
    messaging: TwilioClient,
    template: str,
    template_type: TemplateType | None,
    now: datetime,
    sent_by_id: uuid.UUID | None = None,
    is_followup: bool = False,
    followup_attempt: int | None = None,
) -> Message:
    """Render and send one WhatsApp message, then record it.

    Args:
        session: Active database session.
        patient: Recipient with doctor and clinic loaded.
        messaging: Messaging adapter.
        template: Template text with placeholders.
        template_type: Template selector stored on the message, if any.
        now: Dispatch time.
        sent_by_id: Sending user; None for system sends.
        is_followup: Whether the follow-up run is sending.
        followup_attempt: Ordinal of this follow-up message.

    Returns:
        Created Message in status queued.

    Raises:
        ProviderError: If the provider rejects the message.
    """
    body = render(template, patient_variables(patient))
    sid = await messaging.send_whatsapp(to=patient.phone, body=body)
    message = await create_message(
        session,
        patient_id=patient.patient_id,
        content=body,
        external_message_id=sid,
        sent_at=now,
        template_type=template_type.value if template_type else None,
        sent_by_id=sent_by_id,
        is_followup=is_followup,
        followup_attempt=followup_attempt,
    )
    await record_message_attempt(session, patient.patient_id, sent_at=now)
    await log_event(
        session,
        patient_id=patient.patient_id,
        message_id=message.message_id,
        event_type="message_dispatched",
        idempotency_key=f"message_dispatched:{sid}",
        payload={
            "template_type": message.template_type,
            "is_followup": is_followup,
            "followup_attempt": followup_attempt,
        },
        channel=Channel.WHATSAPP.value,
    )
    logger.info(
        "patient_message_sent",
        extra={
            "patient_id": str(patient.patient_id),
            "sid": sid,
            "template_type": message.template_type,
        },
    )
    return message


async def place_patient_call(
    session: AsyncSession,
    patient: Patient,
    *,
    voice: RetellClient,
    callback_url: str,
    now: datetime,
    is_followup: bool = False,
    followup_attempt: int | None = None,
) -> Call:
    """Render the patient's call script, place the call, and record it.

    The patient's status is not changed here; callers apply the
    CallDispatched transition.

    Args:
        session: Active database session.
        patient: Callee with doctor and clinic loaded.
        voice: Voice adapter.
        callback_url: Webhook URL for the call outcome.
        now: Dispatch time.
        is_followup: Whether the follow-up run is calling.
        followup_attempt: Ordinal of this follow-up call.

    Returns:
        Created Call in status scheduled.

    Raises:
        ProviderError: If the provider rejects the call.
    """
    variables = patient_variables(patient)
    dynamic_variables = build_dynamic_variables(
        patient_name=patient.name,
        appointment_date=format_appointment_date(patient.appointment_date),
        doctor_name=variables["doctor_name"],
        clinic_name=patient.clinic.name if patient.clinic else None,
        appointment_reason=patient.treatment,
        clinic_phone=patient.clinic.phone if patient.clinic else None,
    )
    script = render(patient.call_script, {**dynamic_variables, **variables})
    result = await voice.create_phone_call(
        to_number=to_e164(patient.phone),
        script=script,
        dynamic_variables=dynamic_variables,
        callback_url=callback_url,
    )
    call = await create_call(
        session,
        patient_id=patient.patient_id,
        external_call_id=result.call_id,
        call_time=now,
        is_followup=is_followup,
        followup_attempt=followup_attempt,
    )
    await record_call_attempt(session, patient.patient_id, called_at=now)
    await log_event(
        session,
        patient_id=patient.patient_id,
        call_id=call.call_id,
        event_type="call_dispatched",
        idempotency_key=f"call_dispatched:{result.call_id}",
        payload={
            "is_followup": is_followup,
            "followup_attempt": followup_attempt,
            "provider_status": result.status,
        },
        channel=Channel.VOICE.value,
    )
    logger.info(
        "patient_call_placed",
        extra={
            "patient_id": str(patient.patient_id),
            "external_call_id": result.call_id,
        },
    )
    return call
