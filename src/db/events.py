"""Append-only event logging with idempotency key enforcement."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import Event


async def log_event(
    session: AsyncSession,
    *,
    event_type: str,
    patient_id: uuid.UUID | None = None,
    idempotency_key: str | None = None,
    call_id: uuid.UUID | None = None,
    message_id: uuid.UUID | None = None,
    payload: dict | None = None,
    provenance: str | None = "system",
    channel: str | None = None,
) -> Event | None:
    """Log an event to the append-only events table.

    If an idempotency_key is provided and already exists, the event is
    skipped (returns None). Provider webhook redeliveries therefore
    leave a single audit entry.

    Args:
        session: Active database session.
        event_type: Type of event (e.g. "call_dispatched", "reply_received").
        patient_id: Patient this event belongs to.
        idempotency_key: Unique key to prevent duplicate events.
        call_id: Related call if applicable.
        message_id: Related message if applicable.
        payload: Event-specific data.
        provenance: Data source (system, provider, user).
        channel: Communication channel (voice, whatsapp, sms, system).

    Returns:
        The created Event, or None if deduplicated.
    """
    if idempotency_key:
        existing = await session.execute(
            select(Event).where(Event.idempotency_key == idempotency_key)
        )
        if existing.scalar_one_or_none() is not None:
            return None

    event = Event(
        event_id=uuid.uuid4(),
        patient_id=patient_id,
        call_id=call_id,
        message_id=message_id,
        event_type=event_type,
        payload=payload or {},
        provenance=provenance,
        idempotency_key=idempotency_key,
        channel=channel,
        created_at=datetime.now(UTC),
    )
    session.add(event)
    await session.flush()
    return event
