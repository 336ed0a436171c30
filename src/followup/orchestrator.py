"""Follow-up orchestrator: decides, per patient, whether to message or call.

One run:
    1. loads the clinic settings once,
    2. selects patients in pending/not_answered that are under both
       follow-up ceilings,
    3. for each, sends a follow-up message when messages come first and
       the message ceiling allows it, otherwise places a follow-up call,
    4. promotes patients that exhausted both ceilings to cold leads.

Patients are processed sequentially and independently: a provider
failure for one patient is logged and the run moves on. Each patient is
claimed before dispatch and committed on its own, so an overlapping run
skips patients already in flight.
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
    get_patient_by_id,
    increment_followup_attempt,
    list_exhausted_patients,
    list_followup_candidate_ids,
    list_new_patients_for_reminder,
    list_patients_for_message_followup,
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
from src.followup.lifecycle import apply_event
from src.shared.errors import ConfigurationError, ProviderError
from src.shared.lifecycle import AttemptsExhausted, CallDispatched, is_followup_candidate
from src.shared.response_models import BatchMessageResult, FollowupRunResult
from src.shared.types import Channel, PatientStatus, TemplateType

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.db.models import Patient
    from src.db.settings_store import ClinicSettings
    from src.services.retell_client import RetellClient
    from src.services.twilio_client import TwilioClient

logger = logging.getLogger(__name__)

# Per-run cap for the WhatsApp reminder and follow-up batches
MESSAGE_BATCH_LIMIT = 10

_SENT = "sent"
_CALLED = "called"
_SKIPPED = "skipped"
_FAILED = "failed"


class _DailyCallCap:
    """Tracks remaining calls for the clinic day within one run."""

    def __init__(self, remaining: int) -> None:
        self.remaining = remaining

    @property
    def reached(self) -> bool:
        return self.remaining <= 0

    def use(self) -> None:
        self.remaining -= 1


async def run_followups(
    session: AsyncSession,
    *,
    settings: ClinicSettings | None = None,
    voice: RetellClient | None = None,
    messaging: TwilioClient | None = None,
    now: datetime | None = None,
    app_settings: Settings | None = None,
) -> FollowupRunResult:
    """Run one follow-up pass over all actionable patients.

    Args:
        session: Active database session. Committed once per patient.
        settings: Clinic settings; loaded from the store when omitted.
        voice: Voice adapter; built from settings when needed.
        messaging: Messaging adapter; built from settings when needed.
        now: Run time.
        app_settings: Process settings.

    Returns:
        FollowupRunResult. ``success`` is False only for configuration
        or infrastructure failures; per-patient provider failures are
        counted in ``failed``.
    """
    now = now or datetime.now(UTC)
    app_settings = app_settings or get_settings()
    try:
        settings = settings or await load_clinic_settings(session)
        candidate_ids = await list_followup_candidate_ids(
            session,
            max_calls=settings.max_followup_calls,
            max_messages=settings.max_followup_messages,
        )
        logger.info("followup_run_started", extra={"candidates": len(candidate_ids)})

        result = FollowupRunResult(success=True, candidates=len(candidate_ids))
        if candidate_ids:
            if settings.send_message_before_call:
                messaging = messaging or build_messaging_client(settings, app_settings)
            else:
                voice = voice or build_voice_client(settings, app_settings)
            placed_today = await count_calls_since(
                session, start_of_clinic_day(now, app_settings),
            )
            cap = _DailyCallCap(settings.max_calls_per_day - placed_today)

            for patient_id in candidate_ids:
                outcome = await _process_candidate(
                    session,
                    patient_id,
                    settings=settings,
                    voice=voice,
                    messaging=messaging,
                    cap=cap,
                    now=now,
                    app_settings=app_settings,
                )
                if outcome == _SENT:
                    result.messages_sent += 1
                elif outcome == _CALLED:
                    result.calls_placed += 1
                elif outcome == _FAILED:
                    result.failed += 1
                else:
                    result.skipped += 1

        result.cold_leads = await _promote_cold_leads(session, settings)
        await session.commit()
    except ConfigurationError as exc:
        logger.error("followup_run_config_error", extra={"error": str(exc)})
        return FollowupRunResult(success=False, error=str(exc))
    except Exception as exc:
        logger.exception("followup_run_failed")
        await session.rollback()
        return FollowupRunResult(success=False, error=str(exc) or "Failed to process follow-ups")

    result.message = f"Processed follow-ups for {len(candidate_ids)} patients"
    logger.info(
        "followup_run_completed",
        extra={
            "candidates": result.candidates,
            "messages_sent": result.messages_sent,
            "calls_placed": result.calls_placed,
            "failed": result.failed,
            "cold_leads": result.cold_leads,
        },
    )
    return result


async def _process_candidate(
    session: AsyncSession,
    patient_id: uuid.UUID,
    *,
    settings: ClinicSettings,
    voice: RetellClient | None,
    messaging: TwilioClient | None,
    cap: _DailyCallCap,
    now: datetime,
    app_settings: Settings,
) -> str:
    """Claim, dispatch, record, and release one candidate patient.

    Returns:
        One of "sent", "called", "skipped", "failed".
    """
    claimed = await claim_patient_for_followup(
        session,
        patient_id,
        now=now,
        lock_timeout=timedelta(seconds=app_settings.followup_lock_timeout_seconds),
    )
    await session.commit()
    if not claimed:
        logger.info("followup_patient_in_flight", extra={"patient_id": str(patient_id)})
        return _SKIPPED

    try:
        patient = await get_patient_by_id(session, patient_id)
        if patient is None or not _still_candidate(patient, settings):
            outcome = _SKIPPED
        elif (
            settings.send_message_before_call
            and patient.followup_messages < settings.max_followup_messages
        ):
            outcome = await _send_followup_message(session, patient, settings, messaging, now)
        elif patient.followup_calls < settings.max_followup_calls:
            outcome = await _place_followup_call(
                session, patient, voice, cap, now, app_settings,
            )
        else:
            outcome = _SKIPPED
    except ProviderError as exc:
        await session.rollback()
        logger.warning(
            "followup_dispatch_failed",
            extra={
                "patient_id": str(patient_id),
                "provider": exc.provider,
                "error": exc.message,
            },
        )
        await log_event(
            session,
            patient_id=patient_id,
            event_type="followup_dispatch_failed",
            payload={"provider": exc.provider, "error": exc.message},
            channel=Channel.SYSTEM.value,
        )
        outcome = _FAILED
    except ConfigurationError:
        await session.rollback()
        await release_patient_claim(session, patient_id)
        await session.commit()
        raise
    except Exception:
        await session.rollback()
        logger.exception("followup_patient_failed", extra={"patient_id": str(patient_id)})
        outcome = _FAILED

    await release_patient_claim(session, patient_id)
    await session.commit()
    return outcome


def _still_candidate(patient: Patient, settings: ClinicSettings) -> bool:
    """Re-check candidacy after the claim, in case another run just acted."""
    return is_followup_candidate(
        PatientStatus(patient.status),
        patient.followup_calls,
        patient.followup_messages,
        settings.max_followup_calls,
        settings.max_followup_messages,
    )


async def _promote_cold_leads(session: AsyncSession, settings: ClinicSettings) -> int:
    """Reclassify patients who used up both ceilings as cold leads."""
    patients = await list_exhausted_patients(
        session,
        max_calls=settings.max_followup_calls,
        max_messages=settings.max_followup_messages,
    )
    for patient in patients:
        await apply_event(session, patient, AttemptsExhausted())
    return len(patients)


async def _send_followup_message(
    session: AsyncSession,
    patient: Patient,
    settings: ClinicSettings,
    messaging: TwilioClient | None,
    now: datetime,
) -> str:
    """Send the follow-up message template and count the attempt."""
    if messaging is None:
        raise ConfigurationError("WhatsApp not enabled or configured")
    await send_patient_message(
        session,
        patient,
        messaging=messaging,
        template=settings.message_template,
        template_type=TemplateType.FOLLOW_UP,
        now=now,
        is_followup=True,
        followup_attempt=patient.followup_messages + 1,
    )
    await increment_followup_attempt(session, patient.patient_id, Channel.WHATSAPP)
    return _SENT


async def _place_followup_call(
    session: AsyncSession,
    patient: Patient,
    voice: RetellClient | None,
    cap: _DailyCallCap,
    now: datetime,
    app_settings: Settings,
) -> str:
    """Place a follow-up call, count it, and mark the patient called."""
    if voice is None:
        raise ConfigurationError("Retell API key not configured")
    if cap.reached:
        logger.info(
            "followup_call_daily_cap_reached",
            extra={"patient_id": str(patient.patient_id)},
        )
        return _SKIPPED
    await place_patient_call(
        session,
        patient,
        voice=voice,
        callback_url=app_settings.voice_callback_url,
        now=now,
        is_followup=True,
        followup_attempt=patient.followup_calls + 1,
    )
    cap.use()
    await increment_followup_attempt(session, patient.patient_id, Channel.VOICE)
    await apply_event(session, patient, CallDispatched())
    return _CALLED


async def process_new_patients(
    session: AsyncSession,
    *,
    settings: ClinicSettings | None = None,
    messaging: TwilioClient | None = None,
    now: datetime | None = None,
    limit: int = MESSAGE_BATCH_LIMIT,
) -> BatchMessageResult:
    """Send the WhatsApp reminder template to never-messaged pending patients.

    Args:
        session: Active database session.
        settings: Clinic settings; loaded when omitted.
        messaging: Messaging adapter; built from settings when omitted.
        now: Run time.
        limit: Maximum patients per batch.

    Returns:
        BatchMessageResult with per-patient errors.

    Raises:
        ConfigurationError: If settings or WhatsApp configuration are missing.
    """
    now = now or datetime.now(UTC)
    settings = settings or await load_clinic_settings(session)
    messaging = messaging or build_messaging_client(settings)
    patients = await list_new_patients_for_reminder(session, limit=limit)
    return await _send_batch(
        session, patients, settings, messaging, TemplateType.REMINDER, now,
    )


async def process_message_followups(
    session: AsyncSession,
    *,
    settings: ClinicSettings | None = None,
    messaging: TwilioClient | None = None,
    now: datetime | None = None,
    limit: int = MESSAGE_BATCH_LIMIT,
) -> BatchMessageResult:
    """Send the WhatsApp follow-up template to patients who went quiet.

    Selects not_answered/follow_up patients last messaged more than
    ``days_before_followup`` days ago and under the message ceiling.

    Args:
        session: Active database session.
        settings: Clinic settings; loaded when omitted.
        messaging: Messaging adapter; built from settings when omitted.
        now: Run time.
        limit: Maximum patients per batch.

    Returns:
        BatchMessageResult with per-patient errors.

    Raises:
        ConfigurationError: If settings or WhatsApp configuration are missing.
    """
    now = now or datetime.now(UTC)
    settings = settings or await load_clinic_settings(session)
    messaging = messaging or build_messaging_client(settings)
    patients = await list_patients_for_message_followup(
        session,
        last_message_before=now - timedelta(days=settings.days_before_followup),
        max_messages=settings.max_followup_messages,
        limit=limit,
    )
    return await _send_batch(
        session, patients, settings, messaging, TemplateType.FOLLOW_UP, now,
    )


async def _send_batch(
    session: AsyncSession,
    patients: list[Patient],
    settings: ClinicSettings,
    messaging: TwilioClient,
    template_type: TemplateType,
    now: datetime,
) -> BatchMessageResult:
    """Send one template to each patient, isolating provider failures."""
    result = BatchMessageResult(success=True, processed=len(patients))
    for patient in patients:
        try:
            await send_patient_message(
                session,
                patient,
                messaging=messaging,
                template=settings.template_for(template_type),
                template_type=template_type,
                now=now,
                is_followup=template_type == TemplateType.FOLLOW_UP,
                followup_attempt=patient.message_attempts + 1,
            )
        except ProviderError as exc:
            logger.warning(
                "batch_message_failed",
                extra={"patient_id": str(patient.patient_id), "error": exc.message},
            )
            result.errors.append(f"{patient.name}: {exc.message}")
            continue
        result.sent += 1
    logger.info(
        "message_batch_completed",
        extra={
            "template_type": template_type.value,
            "processed": result.processed,
            "sent": result.sent,
        },
    )
    return result
