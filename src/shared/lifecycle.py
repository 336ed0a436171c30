"""Pure lead-status transitions for patients, calls, and messages.

``transition`` maps a patient's current state and a lifecycle event to the
next state. It performs no I/O; persistence lives in
``src.followup.lifecycle``. Attempt counters are not part of the state
here because the database increments them atomically.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import assert_never

from src.shared.classifier import Classification
from src.shared.types import (
    FOLLOWUP_ELIGIBLE_STATUSES,
    MAX_ATTEMPTS_REASON,
    MESSAGE_STATUS_RANK,
    NO_CLEAR_INTENT,
    TERMINAL_CALL_STATUSES,
    CallStatus,
    MessageStatus,
    PatientStatus,
)


@dataclass(frozen=True)
class PatientState:
    """Mutable-by-transition fields of a patient record.

    Attributes:
        status: Current lead status.
        status_reason: Explanation of the current status.
        ai_notes: Analysis notes derived from the last transcript.
        last_response: Last inbound reply text.
        last_response_date: When the last reply arrived.
    """

    status: PatientStatus = PatientStatus.PENDING
    status_reason: str | None = None
    ai_notes: str | None = None
    last_response: str | None = None
    last_response_date: datetime | None = None


@dataclass(frozen=True)
class CallDispatched:
    """A voice call was placed for the patient."""


@dataclass(frozen=True)
class CallCompleted:
    """A call finished with a transcript that was classified."""

    classification: Classification
    transcript: str


@dataclass(frozen=True)
class CallNotAnswered:
    """The provider reported the call went unanswered."""


@dataclass(frozen=True)
class CallFailed:
    """The provider reported the call failed."""


@dataclass(frozen=True)
class ReplyReceived:
    """A WhatsApp reply from the patient was classified."""

    classification: Classification
    body: str
    received_at: datetime


@dataclass(frozen=True)
class AttemptsExhausted:
    """Both follow-up ceilings have been reached."""


LifecycleEvent = (
    CallDispatched
    | CallCompleted
    | CallNotAnswered
    | CallFailed
    | ReplyReceived
    | AttemptsExhausted
)


def build_ai_notes(reason: str, transcript: str) -> str:
    """Format analysis notes stored on the patient after a call."""
    return f"AI analysis: {reason or NO_CLEAR_INTENT}\n\nTranscript: {transcript}"


def transition(state: PatientState, event: LifecycleEvent) -> PatientState:
    """Compute the next patient state for a lifecycle event.

    Args:
        state: Current patient state.
        event: Event to apply.

    Returns:
        New patient state (the input is never mutated).
    """
    if isinstance(event, CallDispatched):
        return replace(state, status=PatientStatus.CALLED)
    if isinstance(event, CallCompleted):
        reason = event.classification.reason
        return replace(
            state,
            status=event.classification.status,
            status_reason=reason,
            ai_notes=build_ai_notes(reason, event.transcript),
        )
    if isinstance(event, CallNotAnswered):
        return replace(state, status=PatientStatus.NOT_ANSWERED)
    if isinstance(event, CallFailed):
        # A failed dial carries no patient signal; the next run retries.
        return state
    if isinstance(event, ReplyReceived):
        return replace(
            state,
            status=event.classification.status,
            status_reason=event.classification.reason,
            last_response=event.body,
            last_response_date=event.received_at,
        )
    if isinstance(event, AttemptsExhausted):
        if state.status not in FOLLOWUP_ELIGIBLE_STATUSES:
            return state
        return replace(
            state,
            status=PatientStatus.NOT_ANSWERED,
            status_reason=MAX_ATTEMPTS_REASON,
        )
    assert_never(event)


def is_followup_candidate(
    status: PatientStatus,
    calls: int,
    messages: int,
    max_calls: int,
    max_messages: int,
) -> bool:
    """Return True when a patient qualifies for the next follow-up run.

    Args:
        status: Current patient status.
        calls: Follow-up calls placed so far.
        messages: Follow-up messages sent so far.
        max_calls: Call ceiling.
        max_messages: Message ceiling.

    Returns:
        True if the patient is actionable and under both ceilings.
    """
    return (
        status in FOLLOWUP_ELIGIBLE_STATUSES
        and calls < max_calls
        and messages < max_messages
    )


def can_record_call_outcome(current: CallStatus) -> bool:
    """Return True while a call has not yet reached a terminal status."""
    return current not in TERMINAL_CALL_STATUSES


def advance_message_status(
    current: MessageStatus,
    new: MessageStatus,
) -> MessageStatus | None:
    """Resolve a delivery-status update against the current status.

    Delivery only moves forward (queued, sent, delivered, read). FAILED
    may replace any non-terminal stage. READ and FAILED are terminal.

    Args:
        current: Status stored on the message.
        new: Status reported by the provider.

    Returns:
        The status to store, or None when the update must be ignored.
    """
    if current in (MessageStatus.READ, MessageStatus.FAILED):
        return None
    if new == MessageStatus.FAILED:
        return MessageStatus.FAILED
    if MESSAGE_STATUS_RANK[new] <= MESSAGE_STATUS_RANK[current]:
        return None
    return new
