"""Staff REST API: follow-up runs, ad-hoc calls and messages, patient intake.

Every route requires a bearer JWT; role gates follow the clinic's
operating model (admins schedule calls, clinics and admins trigger
follow-up runs, any staff member may send a message or refresh a call).
Configuration, provider, and not-found errors propagate to the
exception handlers registered in ``create_app()``.
"""

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import CurrentUser, get_current_user, require_roles
from src.db.models import Patient
from src.db.postgres import (
    create_patient,
    delete_patient,
    get_patient_by_id,
    list_cold_leads,
)
from src.db.session import get_async_session
from src.followup.orchestrator import (
    process_message_followups,
    process_new_patients,
    run_followups,
)
from src.followup.scheduling import (
    make_immediate_call,
    refresh_call_status,
    schedule_calls,
    send_template_message,
)
from src.shared.schemas import (
    CallScheduleFilter,
    ImmediateCallRequest,
    MessageSendRequest,
    PatientCreate,
)
from src.shared.types import UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["followups"])

_admin = require_roles(UserRole.ADMIN)
_admin_or_clinic = require_roles(UserRole.ADMIN, UserRole.CLINIC)


# --- Follow-up runs ---


@router.post("/followups/process", response_model=None)
async def trigger_followup_processing(
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(_admin_or_clinic),
) -> dict[str, Any] | JSONResponse:
    """Run the follow-up orchestrator now.

    Args:
        session: Injected database session.
        user: Authenticated admin or clinic user.

    Returns:
        Run summary; 500 with ``{success: false, error}`` on failure.
    """
    logger.info("followup_run_requested", extra={"user_id": str(user.user_id)})
    result = await run_followups(session)
    if not result.success:
        return JSONResponse(status_code=500, content=result.model_dump(exclude_none=True))
    return result.model_dump(exclude_none=True)


@router.post("/messages/process-new")
async def trigger_new_patient_reminders(
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Send the reminder template to never-messaged pending patients.

    Args:
        session: Injected database session.
        user: Authenticated user.

    Returns:
        Batch summary with per-patient errors.
    """
    result = await process_new_patients(session)
    return result.model_dump()


@router.post("/messages/process-followups")
async def trigger_message_followups(
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Send the follow-up template to patients who have gone quiet.

    Args:
        session: Injected database session.
        user: Authenticated user.

    Returns:
        Batch summary with per-patient errors.
    """
    result = await process_message_followups(session)
    return result.model_dump()


# --- Calls ---


@router.post("/calls/schedule")
async def schedule_call_batch(
    selection: CallScheduleFilter,
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(_admin),
) -> dict[str, Any]:
    """Place calls for pending patients selected by id, date, or doctor.

    Args:
        selection: Patient selection filter.
        session: Injected database session.
        user: Authenticated admin.

    Returns:
        Scheduled count, created calls, and per-patient errors.
    """
    result = await schedule_calls(session, selection)
    return result.model_dump()


@router.post("/calls/immediate")
async def place_immediate_call(
    request: ImmediateCallRequest,
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(_admin),
) -> dict[str, Any]:
    """Call one number right now.

    Args:
        request: Number, script, and optional patient context.
        session: Injected database session.
        user: Authenticated admin.

    Returns:
        Created call and patient ids.
    """
    result = await make_immediate_call(session, request, user.user_id)
    return result.model_dump()


@router.get("/calls/{external_call_id}/status")
async def get_call_status(
    external_call_id: str,
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Refresh a call's outcome from the voice provider.

    Args:
        external_call_id: Voice provider call id.
        session: Injected database session.
        user: Authenticated user.

    Returns:
        Current call status, duration, transcript, and recording URL.
    """
    result = await refresh_call_status(session, external_call_id)
    return result.model_dump()


# --- Messages ---


@router.post("/messages/send")
async def send_message(
    request: MessageSendRequest,
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Send one WhatsApp template message to a patient.

    Args:
        request: Patient id and template type.
        session: Injected database session.
        user: Authenticated user, recorded as the sender.

    Returns:
        Stored and provider message ids.
    """
    result = await send_template_message(session, request, user.user_id)
    return result.model_dump()


# --- Patients ---


@router.post("/patients", status_code=201)
async def add_patient(
    data: PatientCreate,
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Create a patient lead in status pending.

    Clinic and doctor users create patients in their own clinic; doctors
    are assigned to the patients they add unless another doctor is named.

    Args:
        data: Validated intake payload.
        session: Injected database session.
        user: Authenticated user, recorded as the creator.

    Returns:
        Created patient summary.
    """
    if user.role == UserRole.CLINIC:
        data = data.model_copy(update={"clinic_id": _clinic_scope(user)})
    elif user.role == UserRole.DOCTOR and user.clinic_id is not None:
        data = data.model_copy(update={"clinic_id": user.clinic_id})
    if user.role == UserRole.DOCTOR and data.assigned_doctor_id is None:
        data = data.model_copy(update={"assigned_doctor_id": user.user_id})
    patient = await create_patient(session, data, added_by_id=user.user_id)
    logger.info("patient_created", extra={"patient_id": str(patient.patient_id)})
    return _serialize_patient(patient)


@router.delete("/patients/{patient_id}")
async def remove_patient(
    patient_id: uuid.UUID,
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(_admin_or_clinic),
) -> dict[str, Any]:
    """Delete a patient with their calls and messages.

    Non-admins may only delete patients of their own clinic.

    Args:
        patient_id: Patient UUID.
        session: Injected database session.
        user: Authenticated admin or clinic user.

    Returns:
        ``{"success": True}``.

    Raises:
        HTTPException: 404 if the patient does not exist in the
            caller's scope, 403 if a clinic user has no clinic.
    """
    clinic_id = _clinic_scope(user)
    if clinic_id is not None:
        patient = await get_patient_by_id(session, patient_id)
        if patient is None or patient.clinic_id != clinic_id:
            raise HTTPException(status_code=404, detail="Patient not found")
    if not await delete_patient(session, patient_id):
        raise HTTPException(status_code=404, detail="Patient not found")
    logger.info(
        "patient_deleted",
        extra={"patient_id": str(patient_id), "user_id": str(user.user_id)},
    )
    return {"success": True}


@router.get("/patients/cold-leads")
async def get_cold_leads(
    session: AsyncSession = Depends(get_async_session),
    user: CurrentUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    """List cold leads visible to the caller.

    Admins see every clinic; clinic users see their clinic; doctors see
    the patients assigned to them.

    Args:
        session: Injected database session.
        user: Authenticated user.

    Returns:
        Patient summaries, most recently updated first.
    """
    clinic_id = None
    doctor_id = None
    if user.role == UserRole.CLINIC:
        clinic_id = _clinic_scope(user)
    elif user.role == UserRole.DOCTOR:
        doctor_id = user.user_id
    patients = await list_cold_leads(session, clinic_id=clinic_id, doctor_id=doctor_id)
    return [_serialize_patient(p) for p in patients]


# --- Serializers ---


def _clinic_scope(user: CurrentUser) -> uuid.UUID | None:
    """Return the clinic a non-admin user is confined to, None for admins.

    Raises:
        HTTPException: 403 if a non-admin user has no clinic.
    """
    if user.role == UserRole.ADMIN:
        return None
    if user.clinic_id is None:
        raise HTTPException(status_code=403, detail="User is not assigned to a clinic")
    return user.clinic_id


def _serialize_patient(patient: Patient) -> dict[str, Any]:
    """Convert Patient ORM to API dict.

    Args:
        patient: Patient model instance.

    Returns:
        JSON-serializable dict.
    """
    return {
        "patient_id": str(patient.patient_id),
        "name": patient.name,
        "phone": patient.phone,
        "status": patient.status,
        "status_reason": patient.status_reason,
        "appointment_date": (
            patient.appointment_date.isoformat() if patient.appointment_date else None
        ),
        "followup_calls": patient.followup_calls,
        "followup_messages": patient.followup_messages,
        "last_response": patient.last_response,
        "ai_notes": patient.ai_notes,
    }
