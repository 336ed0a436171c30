"""SQLAlchemy ORM models for the clinic follow-up database."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.shared.types import (
    CallStatus,
    MessageStatus,
    MessageType,
    PatientStatus,
    UserRole,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Clinic(Base):
    """Clinic that owns patients and doctors.

    Attributes:
        clinic_id: Primary key UUID.
        name: Clinic display name used in templates.
    """

    __tablename__ = "clinics"

    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200))
    phone: Mapped[str | None] = mapped_column(String(20))
    address: Mapped[str | None] = mapped_column(String(300))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class User(Base):
    """Application user: administrator, clinic account, or doctor.

    Attributes:
        user_id: Primary key UUID.
        role: admin, clinic, or doctor.
    """

    __tablename__ = "users"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(200), unique=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.DOCTOR)
    clinic_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.clinic_id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    clinic: Mapped["Clinic | None"] = relationship()


class Patient(Base):
    """Patient lead with follow-up attempt bookkeeping.

    ``followup_calls`` and ``followup_messages`` only ever increase.
    ``followup_locked_at`` marks a dispatch in flight so that concurrent
    follow-up runs cannot both contact the same patient.

    Attributes:
        patient_id: Primary key UUID.
        status: Current lead status.
        phone_digits: Digits-only phone used to match inbound replies.
    """

    __tablename__ = "patients"

    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200))
    phone: Mapped[str] = mapped_column(String(30))
    phone_digits: Mapped[str] = mapped_column(String(20), index=True)
    email: Mapped[str | None] = mapped_column(String(200))
    appointment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    preferred_call_day: Mapped[str | None] = mapped_column(String(20))
    preferred_call_time: Mapped[str | None] = mapped_column(String(5))
    treatment: Mapped[str | None] = mapped_column(String(200))
    call_script: Mapped[str] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    ai_notes: Mapped[str | None] = mapped_column(Text)
    added_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="SET NULL")
    )
    assigned_doctor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="SET NULL"), index=True
    )
    clinic_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.clinic_id", ondelete="SET NULL"), index=True
    )
    status: Mapped[str] = mapped_column(String(20), default=PatientStatus.PENDING, index=True)
    status_reason: Mapped[str | None] = mapped_column(String(300))
    followup_calls: Mapped[int] = mapped_column(Integer, default=0)
    followup_messages: Mapped[int] = mapped_column(Integer, default=0)
    message_attempts: Mapped[int] = mapped_column(Integer, default=0)
    call_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_message_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_call_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_response: Mapped[str | None] = mapped_column(Text)
    last_response_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    followup_locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index(
            "ix_patients_status_followups",
            "status",
            "followup_calls",
            "followup_messages",
        ),
    )

    assigned_doctor: Mapped["User | None"] = relationship(foreign_keys=[assigned_doctor_id])
    clinic: Mapped["Clinic | None"] = relationship()
    calls: Mapped[list["Call"]] = relationship(back_populates="patient")
    messages: Mapped[list["Message"]] = relationship(back_populates="patient")


class Call(Base):
    """One voice-call attempt.

    Terminal statuses (completed, failed, no_answer) are write-once.

    Attributes:
        call_id: Primary key UUID.
        external_call_id: Voice provider call handle.
    """

    __tablename__ = "calls"

    call_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.patient_id"), index=True
    )
    call_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    status: Mapped[str] = mapped_column(String(20), default=CallStatus.SCHEDULED)
    duration: Mapped[float | None] = mapped_column(Float)
    external_call_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    notes: Mapped[str | None] = mapped_column(Text)
    recording_url: Mapped[str | None] = mapped_column(String(500))
    is_followup: Mapped[bool] = mapped_column(Boolean, default=False)
    followup_attempt: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    patient: Mapped["Patient"] = relationship(back_populates="calls")


class Message(Base):
    """Outbound message with the patient's paired reply, if any.

    Attributes:
        message_id: Primary key UUID.
        sent_by_id: Sending user; None for system-initiated messages.
    """

    __tablename__ = "messages"

    message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.patient_id"), index=True
    )
    content: Mapped[str] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    status: Mapped[str] = mapped_column(String(20), default=MessageStatus.QUEUED)
    message_type: Mapped[str] = mapped_column(String(20), default=MessageType.WHATSAPP)
    template_type: Mapped[str | None] = mapped_column(String(20))
    external_message_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    sent_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="SET NULL")
    )
    is_followup: Mapped[bool] = mapped_column(Boolean, default=False)
    followup_attempt: Mapped[int | None] = mapped_column(Integer)
    response_content: Mapped[str | None] = mapped_column(Text)
    response_type: Mapped[str | None] = mapped_column(String(20))
    response_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    patient: Mapped["Patient"] = relationship(back_populates="messages")


class Setting(Base):
    """Operational configuration row.

    The global row has ``clinic_id`` NULL; a clinic may override it with
    its own row.

    Attributes:
        setting_id: Primary key UUID.
        clinic_id: Owning clinic, or None for the global row.
    """

    __tablename__ = "settings"

    setting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.clinic_id", ondelete="CASCADE"), unique=True
    )
    call_start_time: Mapped[str | None] = mapped_column(String(5))
    call_end_time: Mapped[str | None] = mapped_column(String(5))
    max_calls_per_day: Mapped[int | None] = mapped_column(Integer)
    retell_api_key: Mapped[str | None] = mapped_column(String(200))
    retell_from_number: Mapped[str | None] = mapped_column(String(30))
    twilio_account_sid: Mapped[str | None] = mapped_column(String(100))
    twilio_auth_token: Mapped[str | None] = mapped_column(String(100))
    twilio_phone_number: Mapped[str | None] = mapped_column(String(30))
    whatsapp_enabled: Mapped[bool | None] = mapped_column(Boolean)
    message_template: Mapped[str | None] = mapped_column(Text)
    whatsapp_reminder_template: Mapped[str | None] = mapped_column(Text)
    whatsapp_confirmation_template: Mapped[str | None] = mapped_column(Text)
    whatsapp_follow_up_template: Mapped[str | None] = mapped_column(Text)
    max_followup_calls: Mapped[int | None] = mapped_column(Integer)
    max_followup_messages: Mapped[int | None] = mapped_column(Integer)
    days_before_followup: Mapped[int | None] = mapped_column(Integer)
    send_message_before_call: Mapped[bool | None] = mapped_column(Boolean)
    updated_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="SET NULL")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Event(Base):
    """Append-only event log with provenance and idempotency.

    Attributes:
        event_id: Primary key UUID.
        idempotency_key: Prevents duplicate audit entries on webhook replays.
    """

    __tablename__ = "events"

    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.patient_id", ondelete="CASCADE"), index=True
    )
    call_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    message_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    event_type: Mapped[str] = mapped_column(String(50), index=True)
    payload: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    provenance: Mapped[str | None] = mapped_column(String(20))
    idempotency_key: Mapped[str | None] = mapped_column(String(200), unique=True)
    channel: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index(
            "ix_events_patient_type_created",
            "patient_id",
            "event_type",
            "created_at",
        ),
    )
