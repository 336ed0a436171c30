"""Shared types, enums, and constants used across the application."""

import enum


class PatientStatus(str, enum.Enum):
    """Lead status of a patient record."""

    PENDING = "pending"
    CALLED = "called"
    NOT_ANSWERED = "not_answered"
    FOLLOW_UP = "follow_up"
    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    BOOKED = "booked"
    WRONG_NUMBER = "wrong_number"
    BUSY = "busy"
    CALL_BACK = "call_back"


class CallStatus(str, enum.Enum):
    """Voice call attempt state."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no_answer"


class MessageStatus(str, enum.Enum):
    """Outbound message delivery state."""

    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageType(str, enum.Enum):
    """Messaging channel of a message record."""

    WHATSAPP = "whatsapp"
    SMS = "sms"


class TemplateType(str, enum.Enum):
    """WhatsApp template selector."""

    REMINDER = "reminder"
    CONFIRMATION = "confirmation"
    FOLLOW_UP = "follow_up"


class ReplyIntent(str, enum.Enum):
    """Intent detected in a short WhatsApp reply."""

    YES = "yes"
    NO = "no"
    OTHER = "other"


class UserRole(str, enum.Enum):
    """Role of an authenticated user."""

    ADMIN = "admin"
    CLINIC = "clinic"
    DOCTOR = "doctor"


class Channel(str, enum.Enum):
    """Communication channel recorded on audit events."""

    VOICE = "voice"
    WHATSAPP = "whatsapp"
    SMS = "sms"
    SYSTEM = "system"


# Statuses the follow-up run selects and the cold-lead promotion applies to
FOLLOWUP_ELIGIBLE_STATUSES = frozenset({PatientStatus.PENDING, PatientStatus.NOT_ANSWERED})

TERMINAL_CALL_STATUSES = frozenset(
    {CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.NO_ANSWER}
)

# Delivery stages in order; FAILED is handled separately
MESSAGE_STATUS_RANK = {
    MessageStatus.QUEUED: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}

MAX_ATTEMPTS_REASON = "Max follow-up attempts reached"
NO_CLEAR_INTENT = "No clear intent detected"
