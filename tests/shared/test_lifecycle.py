"""Tests for pure patient, call, and message state transitions."""

from datetime import UTC, datetime

from src.shared.classifier import Classification
from src.shared.lifecycle import (
    AttemptsExhausted,
    CallCompleted,
    CallDispatched,
    CallFailed,
    CallNotAnswered,
    PatientState,
    ReplyReceived,
    advance_message_status,
    build_ai_notes,
    can_record_call_outcome,
    is_followup_candidate,
    transition,
)
from src.shared.types import (
    MAX_ATTEMPTS_REASON,
    CallStatus,
    MessageStatus,
    PatientStatus,
    ReplyIntent,
)


class TestTransition:
    """Lead status transitions."""

    def test_call_dispatched_sets_called(self) -> None:
        """Placing a call moves the patient to called."""
        state = transition(PatientState(), CallDispatched())
        assert state.status == PatientStatus.CALLED

    def test_call_completed_applies_classification(self) -> None:
        """A classified transcript sets status, reason, and AI notes."""
        event = CallCompleted(
            classification=Classification(PatientStatus.BOOKED, "Patient confirmed appointment"),
            transcript="Yes, book me in",
        )
        state = transition(PatientState(status=PatientStatus.CALLED), event)
        assert state.status == PatientStatus.BOOKED
        assert state.status_reason == "Patient confirmed appointment"
        assert state.ai_notes == (
            "AI analysis: Patient confirmed appointment\n\nTranscript: Yes, book me in"
        )

    def test_call_completed_without_intent(self) -> None:
        """An unclassified transcript is recorded as no clear intent."""
        event = CallCompleted(
            classification=Classification(PatientStatus.FOLLOW_UP, ""),
            transcript="hello?",
        )
        state = transition(PatientState(status=PatientStatus.CALLED), event)
        assert state.status == PatientStatus.FOLLOW_UP
        assert state.ai_notes.startswith("AI analysis: No clear intent detected")

    def test_not_answered(self) -> None:
        """An unanswered call moves the patient to not_answered."""
        state = transition(PatientState(status=PatientStatus.CALLED), CallNotAnswered())
        assert state.status == PatientStatus.NOT_ANSWERED

    def test_failed_call_leaves_status(self) -> None:
        """A failed dial does not change the patient."""
        before = PatientState(status=PatientStatus.CALLED, status_reason="x")
        assert transition(before, CallFailed()) == before

    def test_reply_records_response(self) -> None:
        """A reply sets status and stores the body and time."""
        received = datetime(2026, 3, 16, 12, 0, tzinfo=UTC)
        event = ReplyReceived(
            classification=Classification(
                PatientStatus.BOOKED, "Patient confirmed via WhatsApp reply", ReplyIntent.YES,
            ),
            body="YES",
            received_at=received,
        )
        state = transition(PatientState(), event)
        assert state.status == PatientStatus.BOOKED
        assert state.last_response == "YES"
        assert state.last_response_date == received

    def test_exhaustion_from_eligible_status(self) -> None:
        """Exhausted pending patients become cold leads."""
        state = transition(PatientState(status=PatientStatus.PENDING), AttemptsExhausted())
        assert state.status == PatientStatus.NOT_ANSWERED
        assert state.status_reason == MAX_ATTEMPTS_REASON

    def test_exhaustion_ignored_outside_eligible(self) -> None:
        """Exhaustion does not touch a booked patient."""
        before = PatientState(status=PatientStatus.BOOKED)
        assert transition(before, AttemptsExhausted()) == before

    def test_input_not_mutated(self) -> None:
        """transition returns a new state."""
        before = PatientState()
        transition(before, CallDispatched())
        assert before.status == PatientStatus.PENDING


class TestCandidacy:
    """Follow-up candidate predicate."""

    def test_candidate_under_both_ceilings(self) -> None:
        """Pending patient below both ceilings is a candidate."""
        assert is_followup_candidate(PatientStatus.PENDING, 0, 1, 3, 2) is True

    def test_not_candidate_at_either_ceiling(self) -> None:
        """Reaching either ceiling removes the patient."""
        assert is_followup_candidate(PatientStatus.NOT_ANSWERED, 3, 0, 3, 2) is False
        assert is_followup_candidate(PatientStatus.NOT_ANSWERED, 0, 2, 3, 2) is False

    def test_not_candidate_wrong_status(self) -> None:
        """Called and booked patients are not candidates."""
        assert is_followup_candidate(PatientStatus.CALLED, 0, 0, 3, 2) is False
        assert is_followup_candidate(PatientStatus.BOOKED, 0, 0, 3, 2) is False


class TestCallOutcomeWriteOnce:
    """Terminal call outcomes are final."""

    def test_scheduled_accepts_outcome(self) -> None:
        """A scheduled call can still be updated."""
        assert can_record_call_outcome(CallStatus.SCHEDULED) is True

    def test_terminal_rejects_outcome(self) -> None:
        """Completed, failed, and no_answer calls cannot be updated."""
        for status in (CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.NO_ANSWER):
            assert can_record_call_outcome(status) is False


class TestAdvanceMessageStatus:
    """Monotonic delivery status."""

    def test_forward_progress(self) -> None:
        """queued -> sent -> delivered -> read."""
        assert (
            advance_message_status(MessageStatus.QUEUED, MessageStatus.SENT) == MessageStatus.SENT
        )
        assert (
            advance_message_status(MessageStatus.SENT, MessageStatus.DELIVERED)
            == MessageStatus.DELIVERED
        )
        assert (
            advance_message_status(MessageStatus.DELIVERED, MessageStatus.READ)
            == MessageStatus.READ
        )

    def test_skipping_stages_allowed(self) -> None:
        """A late callback may jump straight to delivered."""
        assert (
            advance_message_status(MessageStatus.QUEUED, MessageStatus.DELIVERED)
            == MessageStatus.DELIVERED
        )

    def test_regression_ignored(self) -> None:
        """An out-of-order 'sent' after 'delivered' is ignored."""
        assert advance_message_status(MessageStatus.DELIVERED, MessageStatus.SENT) is None

    def test_same_status_ignored(self) -> None:
        """Duplicate callbacks are no-ops."""
        assert advance_message_status(MessageStatus.SENT, MessageStatus.SENT) is None

    def test_failure_from_non_terminal(self) -> None:
        """Failure may replace any non-terminal stage."""
        assert (
            advance_message_status(MessageStatus.DELIVERED, MessageStatus.FAILED)
            == MessageStatus.FAILED
        )

    def test_terminal_statuses_final(self) -> None:
        """Read and failed never change."""
        assert advance_message_status(MessageStatus.READ, MessageStatus.FAILED) is None
        assert advance_message_status(MessageStatus.FAILED, MessageStatus.DELIVERED) is None


def test_build_ai_notes_format() -> None:
    """AI notes carry the reason and the transcript."""
    assert build_ai_notes("Wrong number", "who?") == "AI analysis: Wrong number\n\nTranscript: who?"
