"""Pydantic result models for follow-up operations.

Each model defines the typed contract returned by an orchestrator,
dispatch, or lifecycle function. All models support dict-style access
(result["key"] and "key" in result) so route handlers and tests can treat
them like the JSON bodies they become.
"""

from typing import Any

from pydantic import BaseModel, Field


class OperationResult(BaseModel):
    """Base model with dict-compatible access.

    Supports: result["key"], "key" in result, result.get("key"),
    {**result}, and dict(result).
    """

    def __getitem__(self, key: str) -> Any:
        """Support dict-style subscript access.

        Args:
            key: Field name to retrieve.

        Returns:
            Field value.

        Raises:
            AttributeError: If key is not a valid field name.
        """
        return getattr(self, key)

    def __contains__(self, key: str) -> bool:
        """Support 'key in result' membership test.

        Args:
            key: Field name to check.

        Returns:
            True if key is a model field with a non-None value.
        """
        if key not in type(self).model_fields:
            return False
        return getattr(self, key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a field value by name with an optional default.

        Args:
            key: Field name to look up.
            default: Value to return if key is not a model field.

        Returns:
            Field value if key exists, otherwise default.
        """
        if key in type(self).model_fields:
            return getattr(self, key)
        return default

    def keys(self) -> list[str]:
        """Return all field names for dict unpacking support.

        Returns:
            List of model field name strings.
        """
        return list(type(self).model_fields.keys())


class FollowupRunResult(OperationResult):
    """Outcome of one follow-up orchestrator run.

    Attributes:
        success: False only for configuration or infrastructure failures.
        message: Human-readable summary on success.
        error: Error description on failure.
    """

    success: bool
    message: str | None = None
    error: str | None = None
    candidates: int = 0
    messages_sent: int = 0
    calls_placed: int = 0
    skipped: int = 0
    failed: int = 0
    cold_leads: int = 0


class BatchMessageResult(OperationResult):
    """Outcome of a WhatsApp batch (new-patient reminders or follow-ups)."""

    success: bool
    processed: int = 0
    sent: int = 0
    errors: list[str] = Field(default_factory=list)


class ScheduledCall(OperationResult):
    """One call placed by a scheduling batch."""

    patient_id: str
    call_id: str
    external_call_id: str


class ScheduleCallsResult(OperationResult):
    """Outcome of an ad-hoc call scheduling request."""

    success: bool = True
    scheduled_count: int = 0
    errors: list[str] = Field(default_factory=list)
    calls: list[ScheduledCall] = Field(default_factory=list)


class ImmediateCallResult(OperationResult):
    """Outcome of a single immediate call."""

    success: bool = True
    call_id: str
    external_call_id: str
    status: str
    patient_id: str


class MessageSendResult(OperationResult):
    """Outcome of a single WhatsApp send."""

    success: bool = True
    message_id: str
    external_message_id: str
    patient_id: str


class CallOutcomeResult(OperationResult):
    """Outcome of applying a voice-provider callback or status poll.

    Attributes:
        updated: False when the callback was a replay or non-terminal.
        patient_status: Patient status after the update.
    """

    success: bool = True
    updated: bool
    call_status: str
    patient_status: str | None = None
    duration: float | None = None
    transcript: str | None = None
    recording_url: str | None = None


class ReplyResult(OperationResult):
    """Outcome of processing an inbound WhatsApp reply."""

    matched: bool
    patient_id: str | None = None
    intent: str | None = None
    patient_status: str | None = None
    confirmation_sent: bool = False
    followup_call_placed: bool = False
