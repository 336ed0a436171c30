"""Ad-hoc operations triggered by staff: call batches, single calls and sends.

Unlike the follow-up run, the single-target operations here let provider
and configuration errors propagate so the caller sees them verbatim.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from src.config.settings import Settings, get_settings
from src.db.events import log_event
from src.db.postgres import (
    create_call,
    create_patient,
    find_patient_by_phone,
    get_call_by_external_id,
    get_patient_by_id,
    list_patients_for_call_scheduling,
    record_call_attempt,
)
from src.db.settings_store import load_clinic_settings
from src.followup.dispatch import (
    build_messaging_client,
    build_voice_client,
    place_patient_call,
    send_patient_message,
)
from src.followup.lifecycle import apply_event, record_call_outcome
from src.services.retell_client import build_dynamic_variables
from src.shared.errors import AttemptLimitError, NotFoundError, ProviderError
from src.shared.lifecycle import CallDispatched, can_record_call_outcome
from src.shared.response_models import (
    CallOutcomeResult,
    ImmediateCallResult,
    MessageSendResult,
    ScheduleCallsResult,
    ScheduledCall,
)
from src.shared.schemas import PatientCreate
from src.shared.types import CallStatus, Channel, TemplateType
from src.shared.validators import to_e164

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from src.db.models import Patient
    from src.db.settings_store import ClinicSettings
    from src.services.retell_client import RetellClient
    from src.services.twilio_client import TwilioClient
    from src.shared.schemas import CallScheduleFilter, ImmediateCallRequest, MessageSendRequest

logger = logging.getLogger(__name__)

_CEILING_TEMPLATES = (TemplateType.REMINDER, TemplateType.FOLLOW_UP)


async def schedule_calls(
    session: AsyncSession,
    selection: CallScheduleFilter,
    *,
    settings: ClinicSettings | None = None,
    voice: RetellClient | None = None,
    now: datetime | None = None,
    app_settings: Settings | None = None,
) -> ScheduleCallsResult:
    """Place calls for a batch of pending patients.

    Patients come from explicit ids, or else from the appointment date
    (tomorrow by default), optionally narrowed to one doctor, capped at
    ``max_calls_per_day``. A failed call is recorded in ``errors`` and
    the batch continues.

    Args:
        session: Active database session.
        selection: Patient selection filter.
        settings: Clinic settings; loaded when omitted.
        voice: Voice adapter; built from settings when omitted.
        now: Dispatch time.
        app_settings: Process settings.

    Returns:
        ScheduleCallsResult with the created calls and per-patient errors.

    Raises:
        ConfigurationError: If settings or the Retell API key are missing.
    """
    now = now or datetime.now(UTC)
    app_settings = app_settings or get_settings()
    settings = settings or await load_clinic_settings(session)
    voice = voice or build_voice_client(settings, app_settings)

    on_date = selection.on_date
    if not selection.patient_ids and on_date is None:
        on_date = (now.astimezone(app_settings.clinic_tz) + timedelta(days=1)).date()
    patients = await list_patients_for_call_scheduling(
        session,
        patient_ids=selection.patient_ids,
        on_date=on_date,
        doctor_id=selection.doctor_id,
        limit=settings.max_calls_per_day,
    )

    result = ScheduleCallsResult()
    for patient in patients:
        try:
            call = await place_patient_call(
                session,
                patient,
                voice=voice,
                callback_url=app_settings.voice_callback_url,
                now=now,
            )
        except ProviderError as exc:
            logger.warning(
                "scheduled_call_failed",
                extra={"patient_id": str(patient.patient_id), "error": exc.message},
            )
            result.errors.append(f"Failed to schedule call for {patient.name}: {exc.message}")
            continue
        await apply_event(session, patient, CallDispatched())
        result.calls.append(
            ScheduledCall(
                patient_id=str(patient.patient_id),
                call_id=str(call.call_id),
                external_call_id=call.external_call_id,
            )
        )
    result.scheduled_count = len(result.calls)
    logger.info(
        "calls_scheduled",
        extra={"selected": len(patients), "scheduled": result.scheduled_count},
    )
    return result


async def make_immediate_call(
    session: AsyncSession,
    request: ImmediateCallRequest,
    user_id: uuid.UUID | None = None,
    *,
    settings: ClinicSettings | None = None,
    voice: RetellClient | None = None,
    now: datetime | None = None,
    app_settings: Settings | None = None,
) -> ImmediateCallResult:
    """Call one number right now, creating the patient if needed.

    Args:
        session: Active database session.
        request: Number, script, and optional patient context.
        user_id: Staff member placing the call.
        settings: Clinic settings; loaded when omitted.
        voice: Voice adapter; built from settings when omitted.
        now: Dispatch time.
        app_settings: Process settings.

    Returns:
        ImmediateCallResult with the call and patient ids.

    Raises:
        ConfigurationError: If settings or the Retell API key are missing.
        NotFoundError: If ``patient_id`` is given but unknown.
        ProviderError: If Retell rejects the call.
    """
    now = now or datetime.now(UTC)
    app_settings = app_settings or get_settings()
    settings = settings or await load_clinic_settings(session)
    voice = voice or build_voice_client(settings, app_settings)
    patient = await _resolve_call_patient(session, request, user_id)

    to_number = to_e164(request.phone_number)
    result = await voice.create_phone_call(
        to_number=to_number,
        script=request.script,
        dynamic_variables=build_dynamic_variables(
            patient_name=request.patient_name or patient.name,
            appointment_date=request.appointment_date,
            doctor_name=request.doctor_name,
            appointment_reason=request.appointment_reason,
        ),
        callback_url=app_settings.voice_callback_url,
        from_number=request.from_number,
    )
    call = await create_call(
        session,
        patient_id=patient.patient_id,
        external_call_id=result.call_id,
        call_time=now,
    )
    await record_call_attempt(session, patient.patient_id, called_at=now)
    await apply_event(session, patient, CallDispatched())
    await log_event(
        session,
        patient_id=patient.patient_id,
        call_id=call.call_id,
        event_type="call_dispatched",
        idempotency_key=f"call_dispatched:{result.call_id}",
        payload={"immediate": True, "provider_status": result.status},
        provenance="staff",
        channel=Channel.VOICE.value,
    )
    logger.info(
        "immediate_call_placed",
        extra={"patient_id": str(patient.patient_id), "external_call_id": result.call_id},
    )
    return ImmediateCallResult(
        call_id=str(call.call_id),
        external_call_id=result.call_id,
        status=CallStatus.SCHEDULED.value,
        patient_id=str(patient.patient_id),
    )


async def _resolve_call_patient(
    session: AsyncSession,
    request: ImmediateCallRequest,
    user_id: uuid.UUID | None,
) -> Patient:
    """Find the patient for an immediate call, or create one from the request."""
    if request.patient_id is not None:
        patient = await get_patient_by_id(session, request.patient_id)
        if patient is None:
            raise NotFoundError("Patient not found")
        return patient

    patient = await find_patient_by_phone(session, request.phone_number)
    if patient is not None:
        return patient

    created = await create_patient(
        session,
        PatientCreate(
            name=request.patient_name or "Unknown Patient",
            phone=request.phone_number,
            call_script=request.script,
            treatment=request.appointment_reason,
        ),
        added_by_id=user_id,
    )
    logger.info("immediate_call_patient_created", extra={"patient_id": str(created.patient_id)})
    return await get_patient_by_id(session, created.patient_id)


async def send_template_message(
    session: AsyncSession,
    request: MessageSendRequest,
    sent_by_id: uuid.UUID | None = None,
    *,
    settings: ClinicSettings | None = None,
    messaging: TwilioClient | None = None,
    now: datetime | None = None,
) -> MessageSendResult:
    """Send one WhatsApp template message to a patient.

    Args:
        session: Active database session.
        request: Patient id and template selector.
        sent_by_id: Staff member sending the message.
        settings: Clinic settings; loaded when omitted.
        messaging: Messaging adapter; built from settings when omitted.
        now: Dispatch time.

    Returns:
        MessageSendResult with the stored and provider message ids.

    Raises:
        NotFoundError: If the patient does not exist.
        ConfigurationError: If WhatsApp is disabled or not configured.
        AttemptLimitError: If a reminder or follow-up would exceed the
            patient's message ceiling.
        ProviderError: If Twilio rejects the message.
    """
    now = now or datetime.now(UTC)
    patient = await get_patient_by_id(session, request.patient_id)
    if patient is None:
        raise NotFoundError("Patient not found")
    settings = settings or await load_clinic_settings(session, patient.clinic_id)
    messaging = messaging or build_messaging_client(settings)

    template_type = TemplateType(request.template_type)
    if (
        template_type in _CEILING_TEMPLATES
        and patient.message_attempts >= settings.max_followup_messages
    ):
        raise AttemptLimitError("Maximum message attempts reached")

    message = await send_patient_message(
        session,
        patient,
        messaging=messaging,
        template=settings.template_for(template_type),
        template_type=template_type,
        now=now,
        sent_by_id=sent_by_id,
        is_followup=template_type == TemplateType.FOLLOW_UP,
        followup_attempt=patient.message_attempts + 1,
    )
    return MessageSendResult(
        message_id=str(message.message_id),
        external_message_id=message.external_message_id,
        patient_id=str(patient.patient_id),
    )


async def refresh_call_status(
    session: AsyncSession,
    external_call_id: str,
    *,
    settings: ClinicSettings | None = None,
    voice: RetellClient | None = None,
) -> CallOutcomeResult:
    """Poll the voice provider for a call and apply any final outcome.

    A call that already has a terminal outcome is answered from the
    database without contacting the provider.

    Args:
        session: Active database session.
        external_call_id: Voice provider call id.
        settings: Clinic settings; loaded when omitted.
        voice: Voice adapter; built from settings when omitted.

    Returns:
        CallOutcomeResult with the current call state.

    Raises:
        NotFoundError: If no call has this external id.
        ConfigurationError: If the Retell API key is missing.
        ProviderError: If Retell rejects the request.
    """
    call = await get_call_by_external_id(session, external_call_id)
    if call is None:
        raise NotFoundError("Call not found")
    if not can_record_call_outcome(CallStatus(call.status)):
        return CallOutcomeResult(
            updated=False,
            call_status=call.status,
            duration=call.duration,
            transcript=call.notes,
            recording_url=call.recording_url,
        )

    settings = settings or await load_clinic_settings(session)
    voice = voice or build_voice_client(settings)
    polled = await voice.get_call(external_call_id)
    return await record_call_outcome(
        session,
        external_call_id=external_call_id,
        status=polled.status,
        duration=polled.duration,
        transcript=polled.transcript,
        recording_url=polled.recording_url,
    )
