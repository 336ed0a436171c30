"""initial_followup_schema

Revision ID: d4e5f6a7b8c9
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "d4e5f6a7b8c9"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Create clinics, users, patients, calls, messages, settings, events."""
    op.create_table(
        "clinics",
        sa.Column("clinic_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(20)),
        sa.Column("address", sa.String(300)),
        _created_at(),
    )
    op.create_table(
        "users",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(200), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="doctor"),
        sa.Column(
            "clinic_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clinics.clinic_id", ondelete="SET NULL"),
        ),
        _created_at(),
    )
    op.create_table(
        "patients",
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(30), nullable=False),
        sa.Column("phone_digits", sa.String(20), nullable=False),
        sa.Column("email", sa.String(200)),
        sa.Column("appointment_date", sa.DateTime(timezone=True)),
        sa.Column("preferred_call_day", sa.String(20)),
        sa.Column("preferred_call_time", sa.String(5)),
        sa.Column("treatment", sa.String(200)),
        sa.Column("call_script", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("ai_notes", sa.Text()),
        sa.Column(
            "added_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
        ),
        sa.Column(
            "assigned_doctor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
        ),
        sa.Column(
            "clinic_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clinics.clinic_id", ondelete="SET NULL"),
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("status_reason", sa.String(300)),
        sa.Column("followup_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("followup_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("message_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("call_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message_date", sa.DateTime(timezone=True)),
        sa.Column("last_call_date", sa.DateTime(timezone=True)),
        sa.Column("last_response", sa.Text()),
        sa.Column("last_response_date", sa.DateTime(timezone=True)),
        sa.Column("followup_locked_at", sa.DateTime(timezone=True)),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_patients_phone_digits", "patients", ["phone_digits"])
    op.create_index("ix_patients_status", "patients", ["status"])
    op.create_index("ix_patients_assigned_doctor_id", "patients", ["assigned_doctor_id"])
    op.create_index("ix_patients_clinic_id", "patients", ["clinic_id"])
    op.create_index(
        "ix_patients_status_followups",
        "patients",
        ["status", "followup_calls", "followup_messages"],
    )

    op.create_table(
        "calls",
        sa.Column("call_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "patient_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("patients.patient_id"),
            nullable=False,
        ),
        sa.Column("call_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("duration", sa.Float()),
        sa.Column("external_call_id", sa.String(100), unique=True),
        sa.Column("notes", sa.Text()),
        sa.Column("recording_url", sa.String(500)),
        sa.Column("is_followup", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("followup_attempt", sa.Integer()),
        _created_at(),
    )
    op.create_index("ix_calls_patient_id", "calls", ["patient_id"])

    op.create_table(
        "messages",
        sa.Column("message_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "patient_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("patients.patient_id"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("message_type", sa.String(20), nullable=False, server_default="whatsapp"),
        sa.Column("template_type", sa.String(20)),
        sa.Column("external_message_id", sa.String(100), unique=True),
        sa.Column(
            "sent_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
        ),
        sa.Column("is_followup", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("followup_attempt", sa.Integer()),
        sa.Column("response_content", sa.Text()),
        sa.Column("response_type", sa.String(20)),
        sa.Column("response_date", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_messages_patient_id", "messages", ["patient_id"])

    op.create_table(
        "settings",
        sa.Column("setting_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "clinic_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clinics.clinic_id", ondelete="CASCADE"),
            unique=True,
        ),
        sa.Column("call_start_time", sa.String(5)),
        sa.Column("call_end_time", sa.String(5)),
        sa.Column("max_calls_per_day", sa.Integer()),
        sa.Column("retell_api_key", sa.String(200)),
        sa.Column("retell_from_number", sa.String(30)),
        sa.Column("twilio_account_sid", sa.String(100)),
        sa.Column("twilio_auth_token", sa.String(100)),
        sa.Column("twilio_phone_number", sa.String(30)),
        sa.Column("whatsapp_enabled", sa.Boolean()),
        sa.Column("message_template", sa.Text()),
        sa.Column("whatsapp_reminder_template", sa.Text()),
        sa.Column("whatsapp_confirmation_template", sa.Text()),
        sa.Column("whatsapp_follow_up_template", sa.Text()),
        sa.Column("max_followup_calls", sa.Integer()),
        sa.Column("max_followup_messages", sa.Integer()),
        sa.Column("days_before_followup", sa.Integer()),
        sa.Column("send_message_before_call", sa.Boolean()),
        sa.Column(
            "updated_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )

    op.create_table(
        "events",
        sa.Column("event_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "patient_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("patients.patient_id", ondelete="CASCADE"),
        ),
        sa.Column("call_id", postgresql.UUID(as_uuid=True)),
        sa.Column("message_id", postgresql.UUID(as_uuid=True)),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default="{}"),
        sa.Column("provenance", sa.String(20)),
        sa.Column("idempotency_key", sa.String(200), unique=True),
        sa.Column("channel", sa.String(20)),
        _created_at(),
    )
    op.create_index("ix_events_patient_id", "events", ["patient_id"])
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index(
        "ix_events_patient_type_created",
        "events",
        ["patient_id", "event_type", "created_at"],
    )


def downgrade() -> None:
    """Drop the follow-up schema."""
    op.drop_table("events")
    op.drop_table("settings")
    op.drop_table("messages")
    op.drop_table("calls")
    op.drop_table("patients")
    op.drop_table("users")
    op.drop_table("clinics")
