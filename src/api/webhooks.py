"""Webhook endpoints for the voice (Retell) and messaging (Twilio) providers.

The voice webhook receives final call outcomes and drives the patient
lifecycle through the transcript classifier. The Twilio webhook receives
form-encoded delivery status updates and inbound WhatsApp replies, and
always answers with an empty TwiML envelope so Twilio does not retry.

Architecture note: api/ imports from followup/ per the dependency
direction api -> followup -> services -> db -> shared.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Form, HTTPException
from fastapi.responses import Response

from src.db.session import get_async_session
from src.followup.lifecycle import (
    record_call_outcome,
    record_message_status,
    record_whatsapp_reply,
)
from src.services.twilio_client import empty_twiml
from src.shared.errors import NotFoundError
from src.shared.schemas import VoiceCallbackPayload

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/voice")
@router.post("/retell")
async def handle_voice_callback(
    payload: VoiceCallbackPayload,
    session: AsyncSession = Depends(get_async_session),
) -> dict[str, Any]:
    """Apply a call outcome reported by the voice provider.

    Accepts the flat ``{callId, status, duration, transcript,
    recording_url}`` body or Retell's ``{event, call}`` envelope.
    Replays for calls that already have a final outcome are
    acknowledged without changes.

    Args:
        payload: Parsed callback body.
        session: Injected database session.

    Returns:
        ``{"success": True}`` plus whether anything changed.

    Raises:
        HTTPException: 404 if the call id is unknown.
    """
    logger.info(
        "voice_callback_received",
        extra={"external_call_id": payload.call_id, "status": payload.status},
    )
    try:
        result = await record_call_outcome(
            session,
            external_call_id=payload.call_id,
            status=payload.status,
            duration=payload.duration,
            transcript=payload.transcript,
            recording_url=payload.recording_url,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"success": True, "updated": result.updated}


@router.post("/twilio")
async def handle_twilio_webhook(
    message_sid: str | None = Form(None, alias="MessageSid"),
    message_status: str | None = Form(None, alias="MessageStatus"),
    from_number: str | None = Form(None, alias="From"),
    body: str | None = Form(None, alias="Body"),
    session: AsyncSession = Depends(get_async_session),
) -> Response:
    """Handle a Twilio status callback and/or inbound WhatsApp reply.

    Status updates and replies are handled independently; a single
    request may carry either or both. Failures are logged and the
    request is still acknowledged.

    Args:
        message_sid: Twilio message SID (form field).
        message_status: Delivery status (form field).
        from_number: Sender address for inbound messages (form field).
        body: Inbound message text (form field).
        session: Injected database session.

    Returns:
        Empty TwiML response (text/xml).
    """
    if message_sid and message_status:
        try:
            await record_message_status(
                session,
                external_message_id=message_sid,
                status=message_status,
            )
        except Exception:
            await session.rollback()
            logger.exception(
                "twilio_status_update_failed",
                extra={"message_sid": message_sid},
            )

    if from_number and body:
        try:
            result = await record_whatsapp_reply(
                session,
                from_number=from_number,
                body=body,
            )
        except Exception:
            await session.rollback()
            logger.exception("twilio_reply_failed", extra={"message_sid": message_sid})
        else:
            logger.info(
                "twilio_reply_processed",
                extra={"matched": result.matched, "intent": result.intent},
            )

    return Response(content=empty_twiml(), media_type="text/xml")
