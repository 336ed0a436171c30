"""Operational database CRUD and query operations for Postgres."""

import uuid
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.db.models import Call, Message, Patient
from src.shared.schemas import PatientCreate
from src.shared.types import (
    FOLLOWUP_ELIGIBLE_STATUSES,
    MAX_ATTEMPTS_REASON,
    CallStatus,
    Channel,
    MessageStatus,
    MessageType,
    PatientStatus,
)
from src.shared.validators import phone_digits

_ELIGIBLE = [s.value for s in FOLLOWUP_ELIGIBLE_STATUSES]


# --- Patients ---


async def create_patient(
    session: AsyncSession,
    data: PatientCreate,
    *,
    added_by_id: uuid.UUID | None = None,
) -> Patient:
    """Create a patient from a validated intake payload.

    Args:
        session: Active database session.
        data: Validated intake fields.
        added_by_id: User creating the record.

    Returns:
        Created Patient with status pending and zeroed counters.
    """
    now = datetime.now(UTC)
    patient = Patient(
        patient_id=uuid.uuid4(),
        name=data.name,
        phone=data.phone,
        phone_digits=phone_digits(data.phone),
        email=data.email,
        appointment_date=data.appointment_date,
        preferred_call_day=data.preferred_call_day,
        preferred_call_time=data.preferred_call_time,
        treatment=data.treatment,
        call_script=data.call_script,
        notes=data.notes,
        added_by_id=added_by_id,
        assigned_doctor_id=data.assigned_doctor_id,
        clinic_id=data.clinic_id,
        status=PatientStatus.PENDING.value,
        followup_calls=0,
        followup_messages=0,
        message_attempts=0,
        call_attempts=0,
        created_at=now,
        updated_at=now,
    )
    session.add(patient)
    await session.flush()
    return patient


async def get_patient_by_id(
    session: AsyncSession,
    patient_id: uuid.UUID,
) -> Patient | None:
    """Look up a patient by UUID with doctor and clinic loaded.

    Args:
        session: Active database session.
        patient_id: Patient UUID.

    Returns:
        Patient if found, else None.
    """
    result = await session.execute(
        select(Patient)
        .options(selectinload(Patient.assigned_doctor), selectinload(Patient.clinic))
        .where(Patient.patient_id == patient_id)
    )
    return result.scalar_one_or_none()


async def find_patient_by_phone(
    session: AsyncSession,
    phone: str,
) -> Patient | None:
    """Find the patient an inbound message came from.

    Matches on stored digits. A stored number without country code also
    matches a sender number that ends with it. The most recently created
    match wins when several patients share a number.

    Args:
        session: Active database session.
        phone: Sender phone in any format.

    Returns:
        Matching Patient, or None.
    """
    digits = phone_digits(phone)
    if not digits:
        return None
    result = await session.execute(
        select(Patient)
        .options(selectinload(Patient.assigned_doctor), selectinload(Patient.clinic))
        .where(
            or_(
                Patient.phone_digits == digits,
                and_(
                    func.length(Patient.phone_digits) >= 10,
                    func.right(digits, func.length(Patient.phone_digits))
                    == Patient.phone_digits,
                ),
            )
        )
        .order_by(Patient.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def delete_patient(
    session: AsyncSession,
    patient_id: uuid.UUID,
) -> bool:
    """Delete a patient together with its calls and messages.

    Args:
        session: Active database session.
        patient_id: Patient UUID.

    Returns:
        True if a patient was deleted.
    """
    await session.execute(delete(Call).where(Call.patient_id == patient_id))
    await session.execute(delete(Message).where(Message.patient_id == patient_id))
    result = await session.execute(delete(Patient).where(Patient.patient_id == patient_id))
    return result.rowcount > 0


async def list_followup_candidate_ids(
    session: AsyncSession,
    *,
    max_calls: int,
    max_messages: int,
) -> list[uuid.UUID]:
    """Select patients the follow-up run should act on.

    Args:
        session: Active database session.
        max_calls: Follow-up call ceiling.
        max_messages: Follow-up message ceiling.

    Returns:
        Patient ids in creation order.
    """
    result = await session.execute(
        select(Patient.patient_id)
        .where(
            Patient.status.in_(_ELIGIBLE),
            Patient.followup_calls < max_calls,
            Patient.followup_messages < max_messages,
        )
        .order_by(Patient.created_at)
    )
    return list(result.scalars().all())


async def claim_patient_for_followup(
    session: AsyncSession,
    patient_id: uuid.UUID,
    *,
    now: datetime,
    lock_timeout: timedelta,
) -> bool:
    """Mark a patient as having a follow-up dispatch in flight.

    A single conditional UPDATE, so two concurrent runs cannot both
    claim the same patient. Claims older than ``lock_timeout`` are
    treated as abandoned.

    Args:
        session: Active database session.
        patient_id: Patient UUID.
        now: Current time.
        lock_timeout: Age after which an existing claim is stale.

    Returns:
        True if this caller now holds the claim.
    """
    result = await session.execute(
        update(Patient)
        .where(
            Patient.patient_id == patient_id,
            or_(
                Patient.followup_locked_at.is_(None),
                Patient.followup_locked_at < now - lock_timeout,
            ),
        )
        .values(followup_locked_at=now)
    )
    return result.rowcount == 1


async def release_patient_claim(
    session: AsyncSession,
    patient_id: uuid.UUID,
) -> None:
    """Clear a patient's dispatch-in-flight marker.

    Args:
        session: Active database session.
        patient_id: Patient UUID.
    """
    await session.execute(
        update(Patient)
        .where(Patient.patient_id == patient_id)
        .values(followup_locked_at=None)
    )


async def increment_followup_attempt(
    session: AsyncSession,
    patient_id: uuid.UUID,
    channel: Channel,
) -> None:
    """Atomically count one follow-up attempt on a channel.

    Args:
        session: Active database session.
        patient_id: Patient UUID.
        channel: VOICE for calls, WHATSAPP or SMS for messages.
    """
    if channel == Channel.VOICE:
        values = {"followup_calls": Patient.followup_calls + 1}
    else:
        values = {"followup_messages": Patient.followup_messages + 1}
    await session.execute(
        update(Patient).where(Patient.patient_id == patient_id).values(**values)
    )


async def record_message_attempt(
    session: AsyncSession,
    patient_id: uuid.UUID,
    *,
    sent_at: datetime,
) -> None:
    """Atomically bump the legacy message counter and last-message time.

    Args:
        session: Active database session.
        patient_id: Patient UUID.
        sent_at: Dispatch time.
    """
    await session.execute(
        update(Patient)
        .where(Patient.patient_id == patient_id)
        .values(message_attempts=Patient.message_attempts + 1, last_message_date=sent_at)
    )


async def record_call_attempt(
    session: AsyncSession,
    patient_id: uuid.UUID,
    *,
    called_at: datetime,
) -> None:
    """Atomically bump the legacy call counter and last-call time.

    Args:
        session: Active database session.
        patient_id: Patient UUID.
        called_at: Dispatch time.
    """
    await session.execute(
        update(Patient)
        .where(Patient.patient_id == patient_id)
        .values(call_attempts=Patient.call_attempts + 1, last_call_date=called_at)
    )


async def list_exhausted_patients(
    session: AsyncSession,
    *,
    max_calls: int,
    max_messages: int,
) -> list[Patient]:
    """Lock and return patients who used up both ceilings.

    Patients already reclassified as cold leads are excluded, so each
    patient is promoted once. Rows held by a concurrent run are skipped.

    Args:
        session: Active database session.
        max_calls: Follow-up call ceiling.
        max_messages: Follow-up message ceiling.

    Returns:
        Patients to promote to cold leads.
    """
    result = await session.execute(
        select(Patient)
        .where(
            Patient.status.in_(_ELIGIBLE),
            Patient.followup_calls >= max_calls,
            Patient.followup_messages >= max_messages,
            or_(
                Patient.status != PatientStatus.NOT_ANSWERED.value,
                Patient.status_reason.is_distinct_from(MAX_ATTEMPTS_REASON),
            ),
        )
        .with_for_update(skip_locked=True)
    )
    return list(result.scalars().all())


async def list_patients_for_call_scheduling(
    session: AsyncSession,
    *,
    patient_ids: list[uuid.UUID] | None = None,
    on_date: date | None = None,
    doctor_id: uuid.UUID | None = None,
    limit: int,
) -> list[Patient]:
    """Select pending patients for an ad-hoc call batch.

    Args:
        session: Active database session.
        patient_ids: Explicit patient ids (overrides the date filter).
        on_date: Appointment day (UTC) to select.
        doctor_id: Restrict to one assigned doctor.
        limit: Maximum number of patients.

    Returns:
        Matching patients with doctor and clinic loaded.
    """
    query = (
        select(Patient)
        .options(selectinload(Patient.assigned_doctor), selectinload(Patient.clinic))
        .where(Patient.status == PatientStatus.PENDING.value)
    )
    if patient_ids:
        query = query.where(Patient.patient_id.in_(patient_ids))
    elif on_date is not None:
        start = datetime(on_date.year, on_date.month, on_date.day, tzinfo=UTC)
        query = query.where(
            Patient.appointment_date >= start,
            Patient.appointment_date < start + timedelta(days=1),
        )
    if doctor_id is not None:
        query = query.where(Patient.assigned_doctor_id == doctor_id)
    result = await session.execute(query.order_by(Patient.appointment_date).limit(limit))
    return list(result.scalars().all())


async def list_new_patients_for_reminder(
    session: AsyncSession,
    *,
    limit: int = 10,
) -> list[Patient]:
    """Select pending patients that have never been messaged.

    Args:
        session: Active database session.
        limit: Maximum number of patients.

    Returns:
        Patients with doctor and clinic loaded.
    """
    result = await session.execute(
        select(Patient)
        .options(selectinload(Patient.assigned_doctor), selectinload(Patient.clinic))
        .where(
            Patient.status == PatientStatus.PENDING.value,
            Patient.message_attempts == 0,
        )
        .order_by(Patient.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_patients_for_message_followup(
    session: AsyncSession,
    *,
    last_message_before: datetime,
    max_messages: int,
    limit: int = 10,
) -> list[Patient]:
    """Select unanswered patients due for another WhatsApp follow-up.

    Args:
        session: Active database session.
        last_message_before: Only patients last messaged before this time.
        max_messages: Message ceiling on the legacy message counter.
        limit: Maximum number of patients.

    Returns:
        Patients with doctor and clinic loaded.
    """
    result = await session.execute(
        select(Patient)
        .options(selectinload(Patient.assigned_doctor), selectinload(Patient.clinic))
        .where(
            Patient.status.in_(
                [PatientStatus.NOT_ANSWERED.value, PatientStatus.FOLLOW_UP.value]
            ),
            Patient.last_message_date < last_message_before,
            Patient.message_attempts < max_messages,
        )
        .order_by(Patient.last_message_date)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_cold_leads(
    session: AsyncSession,
    *,
    clinic_id: uuid.UUID | None = None,
    doctor_id: uuid.UUID | None = None,
) -> list[Patient]:
    """List cold leads: patients in status not_answered.

    Args:
        session: Active database session.
        clinic_id: Restrict to one clinic.
        doctor_id: Restrict to one assigned doctor.

    Returns:
        Patients, most recently updated first.
    """
    query = select(Patient).where(Patient.status == PatientStatus.NOT_ANSWERED.value)
    if clinic_id is not None:
        query = query.where(Patient.clinic_id == clinic_id)
    if doctor_id is not None:
        query = query.where(Patient.assigned_doctor_id == doctor_id)
    result = await session.execute(query.order_by(Patient.updated_at.desc()))
    return list(result.scalars().all())


# --- Calls ---


async def create_call(
    session: AsyncSession,
    *,
    patient_id: uuid.UUID,
    external_call_id: str,
    call_time: datetime,
    is_followup: bool = False,
    followup_attempt: int | None = None,
) -> Call:
    """Record a dispatched voice call.

    Args:
        session: Active database session.
        patient_id: Patient UUID.
        external_call_id: Voice provider call id.
        call_time: Dispatch time.
        is_followup: Whether the follow-up run placed the call.
        followup_attempt: Ordinal of this follow-up call.

    Returns:
        Created Call in status scheduled.
    """
    call = Call(
        call_id=uuid.uuid4(),
        patient_id=patient_id,
        external_call_id=external_call_id,
        call_time=call_time,
        status=CallStatus.SCHEDULED.value,
        is_followup=is_followup,
        followup_attempt=followup_attempt,
        created_at=call_time,
    )
    session.add(call)
    await session.flush()
    return call


async def get_call_by_external_id(
    session: AsyncSession,
    external_call_id: str,
    *,
    for_update: bool = False,
) -> Call | None:
    """Look up a call by the voice provider's call id.

    Args:
        session: Active database session.
        external_call_id: Provider call id.
        for_update: Lock the row until the transaction ends.

    Returns:
        Call if found, else None.
    """
    query = select(Call).where(Call.external_call_id == external_call_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def count_calls_since(
    session: AsyncSession,
    since: datetime,
) -> int:
    """Count calls placed since a point in time.

    Args:
        session: Active database session.
        since: Lower bound (inclusive).

    Returns:
        Number of calls.
    """
    result = await session.execute(
        select(func.count()).select_from(Call).where(Call.call_time >= since)
    )
    return int(result.scalar_one())


# --- Messages ---


async def create_message(
    session: AsyncSession,
    *,
    patient_id: uuid.UUID,
    content: str,
    external_message_id: str,
    sent_at: datetime,
    template_type: str | None = None,
    message_type: MessageType = MessageType.WHATSAPP,
    sent_by_id: uuid.UUID | None = None,
    is_followup: bool = False,
    followup_attempt: int | None = None,
) -> Message:
    """Record a dispatched message.

    Args:
        session: Active database session.
        patient_id: Patient UUID.
        content: Rendered message body.
        external_message_id: Messaging provider id.
        sent_at: Dispatch time.
        template_type: Template used, if any.
        message_type: whatsapp or sms.
        sent_by_id: Sending user; None for system sends.
        is_followup: Whether the follow-up run sent the message.
        followup_attempt: Ordinal of this follow-up message.

    Returns:
        Created Message in status queued.
    """
    message = Message(
        message_id=uuid.uuid4(),
        patient_id=patient_id,
        content=content,
        external_message_id=external_message_id,
        sent_at=sent_at,
        status=MessageStatus.QUEUED.value,
        message_type=message_type.value,
        template_type=template_type,
        sent_by_id=sent_by_id,
        is_followup=is_followup,
        followup_attempt=followup_attempt,
    )
    session.add(message)
    await session.flush()
    return message


async def get_message_by_external_id(
    session: AsyncSession,
    external_message_id: str,
    *,
    for_update: bool = False,
) -> Message | None:
    """Look up a message by the messaging provider's id.

    Args:
        session: Active database session.
        external_message_id: Provider message id.
        for_update: Lock the row until the transaction ends.

    Returns:
        Message if found, else None.
    """
    query = select(Message).where(Message.external_message_id == external_message_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_latest_outbound_message(
    session: AsyncSession,
    patient_id: uuid.UUID,
) -> Message | None:
    """Return the most recent message sent to a patient.

    Args:
        session: Active database session.
        patient_id: Patient UUID.

    Returns:
        Latest Message, or None.
    """
    result = await session.execute(
        select(Message)
        .where(Message.patient_id == patient_id)
        .order_by(Message.sent_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
