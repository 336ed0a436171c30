"""Pydantic input models validated before anything is persisted."""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.shared.types import TemplateType
from src.shared.validators import validate_hhmm, validate_phone

# Retell disconnection reasons that mean the patient was never reached
_NO_CONNECT_REASONS = ("dial_no_answer", "dial_failed", "dial_busy")


class PatientCreate(BaseModel):
    """Patient intake payload.

    Attributes:
        name: Patient display name.
        phone: Contact phone (at least 10 digits).
        call_script: Script text used for voice calls.
    """

    name: str = Field(min_length=1, max_length=200)
    phone: str
    call_script: str = Field(min_length=1)
    email: str | None = None
    appointment_date: datetime | None = None
    preferred_call_day: str | None = None
    preferred_call_time: str | None = None
    treatment: str | None = None
    notes: str | None = None
    assigned_doctor_id: uuid.UUID | None = None
    clinic_id: uuid.UUID | None = None

    @field_validator("name", "call_script")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        if not validate_phone(value):
            raise ValueError("phone must contain at least 10 digits")
        return value.strip()

    @field_validator("preferred_call_time")
    @classmethod
    def _check_call_time(cls, value: str | None) -> str | None:
        if value is not None and not validate_hhmm(value):
            raise ValueError("preferred_call_time must be HH:MM")
        return value


class CallScheduleFilter(BaseModel):
    """Selection filter for ad-hoc call scheduling.

    Explicit ``patient_ids`` win over ``date``; with neither, pending
    patients with an appointment tomorrow are selected.
    """

    model_config = ConfigDict(populate_by_name=True)

    on_date: date | None = Field(default=None, alias="date")
    doctor_id: uuid.UUID | None = None
    patient_ids: list[uuid.UUID] | None = None


class ImmediateCallRequest(BaseModel):
    """Request to place one call right now."""

    phone_number: str
    script: str = Field(min_length=1)
    patient_name: str | None = None
    patient_id: uuid.UUID | None = None
    doctor_name: str | None = None
    appointment_date: str | None = None
    appointment_reason: str | None = None
    from_number: str | None = None

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        if not validate_phone(value):
            raise ValueError("phone_number must contain at least 10 digits")
        return value


class MessageSendRequest(BaseModel):
    """Request to send one WhatsApp template message to a patient."""

    patient_id: uuid.UUID
    template_type: TemplateType = TemplateType.REMINDER


class VoiceCallbackPayload(BaseModel):
    """Voice provider call-outcome callback.

    Accepts the flat ``{callId, status, ...}`` shape and Retell's native
    ``{event, call: {call_id, call_status, ...}}`` envelope.
    """

    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(alias="callId")
    status: str
    duration: float | None = None
    transcript: str | None = None
    recording_url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap_provider_envelope(cls, data: object) -> object:
        if not isinstance(data, dict) or not isinstance(data.get("call"), dict):
            return data
        call = data["call"]
        status = call.get("call_status") or data.get("event", "")
        if call.get("disconnection_reason") in _NO_CONNECT_REASONS:
            status = call["disconnection_reason"]
        duration_ms = call.get("duration_ms")
        if duration_ms is None and call.get("end_timestamp") and call.get("start_timestamp"):
            duration_ms = call["end_timestamp"] - call["start_timestamp"]
        return {
            "callId": call.get("call_id"),
            "status": status,
            "duration": duration_ms / 1000 if duration_ms is not None else None,
            "transcript": call.get("transcript"),
            "recording_url": call.get("recording_url"),
        }
