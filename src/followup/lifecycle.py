"""Lifecycle manager: persists patient, call, and message state changes.

Status decisions come from the pure ``src.shared.lifecycle.transition``;
this module loads records, applies transitions, writes them back, and
records an audit event for each change. It also hosts the handlers the
provider webhooks delegate to.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from src.config.settings import Settings, get_settings
from src.db.events import log_event
from src.db.postgres import (
    claim_patient_for_followup,
    count_calls_since,
    find_patient_by_phone,
    get_call_by_external_id,
    get_latest_outbound_message,
    get_message_by_external_id,
    get_patient_by_id,
    increment_followup_attempt,
    release_patient_claim,
)
from src.db.settings_store import load_clinic_settings
from src.followup.dispatch import (
    build_messaging_client,
    build_voice_client,
    place_patient_call,
    send_patient_message,
    start_of_clinic_day,
)
from src.services.retell_client import normalize_call_status
from src.services.twilio_client import normalize_message_status, strip_whatsapp_prefix
from src.shared.classifier import ResponseClassifier, reply_classifier, transcript_classifier
from src.shared.errors import ConfigurationError, NotFoundError, ProviderError
from src.shared.lifecycle import (
    CallCompleted,
    CallDispatched,
    CallFailed,
    CallNotAnswered,
    LifecycleEvent,
    PatientState,
    ReplyReceived,
    advance_message_status,
    can_record_call_outcome,
    transition,
)
from src.shared.response_models import CallOutcomeResult, ReplyResult
from src.shared.types import (
    CallStatus,
    Channel,
    MessageStatus,
    PatientStatus,
    ReplyIntent,
    TemplateType,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from src.db.models import Patient
    from src.db.settings_store import ClinicSettings
    from src.services.retell_client import RetellClient
    from src.services.twilio_client import TwilioClient

logger = logging.getLogger(__name__)


def snapshot(patient: Patient) -> PatientState:
    """Read the transition-relevant fields of a patient record."""
    return PatientState(
        status=PatientStatus(patient.status),
        status_reason=patient.status_reason,
        ai_notes=patient.ai_notes,
        last_response=patient.last_response,
        last_response_date=patient.last_response_date,
    )


async def apply_event(
    session: AsyncSession,
    patient: Patient,
    event: LifecycleEvent,
    *,
    idempotency_key: str | None = None,
) -> PatientState:
    """Apply a lifecycle event to a patient and persist the result.

    Args:
        session: Active database session.
        patient: Patient record to update.
        event: Lifecycle event.
        idempotency_key: Optional key for the audit entry.

    Returns:
        The new patient state.
    """
    before = snapshot(patient)
    after = transition(before, event)
    patient.status = after.status.value
    patient.status_reason = after.status_reason
    patient.ai_notes = after.ai_notes
    patient.last_response = after.last_response
    patient.last_response_date = after.last_response_date
    await session.flush()

    if after.status != before.status:
        await log_event(
            session,
            patient_id=patient.patient_id,
            event_type="patient_status_changed",
            idempotency_key=idempotency_key,
            payload={
                "from": before.status.value,
                "to": after.status.value,
                "reason": after.status_reason,
                "trigger": type(event).__name__,
            },
            channel=Channel.SYSTEM.value,
        )
        logger.info(
            "patient_status_changed",
            extra={
                "patient_id": str(patient.patient_id),
                "from": before.status.value,
                "to": after.status.value,
            },
        )
    return after


async def record_call_outcome(
    session: AsyncSession,
    *,
    external_call_id: str,
    status: str,
    duration: float | None = None,
    transcript: str | None = None,
    recording_url: str | None = None,
    classifier: ResponseClassifier = transcript_classifier,
) -> CallOutcomeResult:
    """Apply a call outcome reported by the voice provider.

    Terminal call outcomes are write-once: a replayed or late callback
    for a call that already reached completed, failed, or no_answer is
    acknowledged without changing anything. A classifier failure is
    logged and the outcome is still recorded.

    Args:
        session: Active database session.
        external_call_id: Voice provider call id.
        status: Provider call status.
        duration: Call length in seconds.
        transcript: Call transcript.
        recording_url: Recording URL.
        classifier: Transcript classifier strategy.

    Returns:
        CallOutcomeResult describing what changed.

    Raises:
        NotFoundError: If no call has this external id.
    """
    call = await get_call_by_external_id(session, external_call_id, for_update=True)
    if call is None:
        logger.warning("call_not_found", extra={"external_call_id": external_call_id})
        raise NotFoundError("Call not found")

    current = CallStatus(call.status)
    new_status = normalize_call_status(status)
    if not can_record_call_outcome(current):
        logger.info(
            "call_outcome_replay_ignored",
            extra={"external_call_id": external_call_id, "status": status},
        )
        return CallOutcomeResult(updated=False, call_status=current.value)
    if new_status is None or new_status == CallStatus.SCHEDULED:
        logger.info(
            "call_outcome_not_final",
            extra={"external_call_id": external_call_id, "status": status},
        )
        return CallOutcomeResult(updated=False, call_status=current.value)

    call.status = new_status.value
    call.duration = duration
    call.notes = transcript
    call.recording_url = recording_url
    await session.flush()
    await log_event(
        session,
        patient_id=call.patient_id,
        call_id=call.call_id,
        event_type="call_outcome_recorded",
        idempotency_key=f"call_outcome:{external_call_id}",
        payload={"status": new_status.value, "duration": duration},
        provenance="provider",
        channel=Channel.VOICE.value,
    )

    patient = await get_patient_by_id(session, call.patient_id)
    if patient is None:
        logger.warning("call_patient_missing", extra={"call_id": str(call.call_id)})
        return CallOutcomeResult(updated=True, call_status=new_status.value)

    event: LifecycleEvent | None = None
    if new_status == CallStatus.COMPLETED and transcript:
        try:
            classification = classifier.classify(transcript)
        except Exception:
            logger.exception(
                "transcript_classification_failed",
                extra={"external_call_id": external_call_id},
            )
        else:
            event = CallCompleted(classification=classification, transcript=transcript)
    elif new_status == CallStatus.NO_ANSWER:
        event = CallNotAnswered()
    elif new_status == CallStatus.FAILED:
        event = CallFailed()

    if event is not None:
        await apply_event(session, patient, event)

    return CallOutcomeResult(
        updated=True,
        call_status=new_status.value,
        patient_status=patient.status,
        duration=duration,
        transcript=transcript,
        recording_url=recording_url,
    )


async def record_message_status(
    session: AsyncSession,
    *,
    external_message_id: str,
    status: str,
) -> bool:
    """Advance a message's delivery status from a provider callback.

    Out-of-order and stale updates are ignored so the stored status
    never moves backwards.

    Args:
        session: Active database session.
        external_message_id: Messaging provider message id.
        status: Provider delivery status.

    Returns:
        True if the stored status changed.
    """
    new_status = normalize_message_status(status)
    if new_status is None:
        return False
    message = await get_message_by_external_id(
        session, external_message_id, for_update=True,
    )
    if message is None:
        logger.warning(
            "message_not_found",
            extra={"external_message_id": external_message_id},
        )
        return False
    target = advance_message_status(MessageStatus(message.status), new_status)
    if target is None:
        logger.info(
            "message_status_regression_ignored",
            extra={
                "external_message_id": external_message_id,
                "current": message.status,
                "reported": status,
            },
        )
        return False
    message.status = target.value
    await session.flush()
    return True


async def record_whatsapp_reply(
    session: AsyncSession,
    *,
    from_number: str,
    body: str,
    settings: ClinicSettings | None = None,
    messaging: TwilioClient | None = None,
    voice: RetellClient | None = None,
    classifier: ResponseClassifier = reply_classifier,
    now: datetime | None = None,
    app_settings: Settings | None = None,
) -> ReplyResult:
    """Process an inbound WhatsApp reply.

    Matches the sender to a patient, classifies the reply, updates the
    patient and the message being answered, then runs the follow-up
    action: a confirmation message for affirmative replies, or a
    follow-up call for unclear replies when the call ceiling, voice
    configuration, and business hours allow it. Side-effect failures are
    logged; the reply itself is always recorded.

    Args:
        session: Active database session.
        from_number: Sender address (``whatsapp:+1555...`` or plain).
        body: Reply text.
        settings: Clinic settings; loaded on demand when omitted.
        messaging: Messaging adapter; built from settings when omitted.
        voice: Voice adapter; built from settings when omitted.
        classifier: Reply classifier strategy.
        now: Current time.
        app_settings: Process settings.

    Returns:
        ReplyResult describing the outcome.
    """
    now = now or datetime.now(UTC)
    app_settings = app_settings or get_settings()
    phone = strip_whatsapp_prefix(from_number)
    patient = await find_patient_by_phone(session, phone)
    if patient is None:
        logger.warning("reply_patient_not_found", extra={"from": phone})
        return ReplyResult(matched=False)

    classification = classifier.classify(body)
    intent = classification.intent or ReplyIntent.OTHER
    await apply_event(
        session,
        patient,
        ReplyReceived(classification=classification, body=body, received_at=now),
    )

    answered = await get_latest_outbound_message(session, patient.patient_id)
    if answered is not None:
        answered.response_content = body
        answered.response_type = intent.value
        answered.response_date = now
        read = advance_message_status(MessageStatus(answered.status), MessageStatus.READ)
        if read is not None:
            answered.status = read.value
        await session.flush()

    await log_event(
        session,
        patient_id=patient.patient_id,
        message_id=answered.message_id if answered else None,
        event_type="reply_received",
        payload={"intent": intent.value, "body": body},
        provenance="patient",
        channel=Channel.WHATSAPP.value,
    )
    result = ReplyResult(
        matched=True,
        patient_id=str(patient.patient_id),
        intent=intent.value,
        patient_status=patient.status,
    )

    if intent == ReplyIntent.NO:
        return result

    try:
        settings = settings or await load_clinic_settings(session, patient.clinic_id)
    except ConfigurationError:
        logger.warning(
            "reply_followup_skipped_no_settings",
            extra={"patient_id": str(patient.patient_id)},
        )
        return result

    if intent == ReplyIntent.YES:
        result.confirmation_sent = await _send_confirmation(
            session, patient, settings, messaging, app_settings, now,
        )
    else:
        result.followup_call_placed = await _call_after_unclear_reply(
            session, patient, settings, voice, app_settings, now,
        )
        result.patient_status = patient.status
    return result


async def _send_confirmation(
    session: AsyncSession,
    patient: Patient,
    settings: ClinicSettings,
    messaging: TwilioClient | None,
    app_settings: Settings,
    now: datetime,
) -> bool:
    """Send the confirmation template after an affirmative reply."""
    try:
        messaging = messaging or build_messaging_client(settings, app_settings)
        await send_patient_message(
            session,
            patient,
            messaging=messaging,
            template=settings.template_for(TemplateType.CONFIRMATION),
            template_type=TemplateType.CONFIRMATION,
            now=now,
        )
    except (ConfigurationError, ProviderError) as exc:
        logger.warning(
            "confirmation_send_failed",
            extra={"patient_id": str(patient.patient_id), "error": str(exc)},
        )
        return False
    return True


async def _call_after_unclear_reply(
    session: AsyncSession,
    patient: Patient,
    settings: ClinicSettings,
    voice: RetellClient | None,
    app_settings: Settings,
    now: datetime,
) -> bool:
    """Place a follow-up call after an unclear reply, when allowed.

    The patient is claimed like an orchestrator dispatch, so a reply that
    lands during a run never double-dials, and the call counts against
    the clinic's daily cap.
    """
    patient_id = str(patient.patient_id)
    if patient.followup_calls >= settings.max_followup_calls:
        logger.info("reply_call_skipped_ceiling", extra={"patient_id": patient_id})
        return False
    if voice is None and not settings.voice_configured:
        logger.info("reply_call_skipped_no_voice", extra={"patient_id": patient_id})
        return False
    if not settings.within_call_window(now.astimezone(app_settings.clinic_tz).time()):
        logger.info("reply_call_skipped_outside_hours", extra={"patient_id": patient_id})
        return False

    claimed = await claim_patient_for_followup(
        session,
        patient.patient_id,
        now=now,
        lock_timeout=timedelta(seconds=app_settings.followup_lock_timeout_seconds),
    )
    if not claimed:
        logger.info("reply_call_skipped_in_flight", extra={"patient_id": patient_id})
        return False

    try:
        placed_today = await count_calls_since(session, start_of_clinic_day(now, app_settings))
        if placed_today >= settings.max_calls_per_day:
            logger.info("reply_call_skipped_daily_cap", extra={"patient_id": patient_id})
            return False
        voice = voice or build_voice_client(settings, app_settings)
        await place_patient_call(
            session,
            patient,
            voice=voice,
            callback_url=app_settings.voice_callback_url,
            now=now,
            is_followup=True,
            followup_attempt=patient.followup_calls + 1,
        )
    except (ConfigurationError, ProviderError) as exc:
        logger.warning(
            "reply_call_failed",
            extra={"patient_id": patient_id, "error": str(exc)},
        )
        return False
    finally:
        await release_patient_claim(session, patient.patient_id)
    await increment_followup_attempt(session, patient.patient_id, Channel.VOICE)
    await apply_event(session, patient, CallDispatched())
    return True
