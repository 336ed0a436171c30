"""Settings store accessor: loads the effective clinic configuration row.

The row is read once per operation and handed to the orchestrator and
adapters as an immutable ``ClinicSettings`` object.
"""

from __future__ import annotations

import logging
import uuid
from datetime import time
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import select

from src.db.models import Setting
from src.shared.comms import default_template_body
from src.shared.errors import ConfigurationError
from src.shared.types import TemplateType
from src.shared.validators import parse_hhmm, validate_hhmm

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _default_body(template_id: str):
    return lambda: default_template_body(template_id)


class ClinicSettings(BaseModel):
    """Immutable snapshot of the effective Setting row.

    Attributes:
        max_followup_calls: Per-patient follow-up call ceiling.
        max_followup_messages: Per-patient follow-up message ceiling.
        send_message_before_call: Try a message before escalating to a call.
    """

    model_config = ConfigDict(frozen=True)

    clinic_id: uuid.UUID | None = None
    call_start_time: str = "09:00"
    call_end_time: str = "17:00"
    max_calls_per_day: int = Field(default=50, ge=0)
    retell_api_key: str = ""
    retell_from_number: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    whatsapp_enabled: bool = False
    message_template: str = Field(default_factory=_default_body("followup_message"))
    whatsapp_reminder_template: str = Field(
        default_factory=_default_body("whatsapp_reminder"),
    )
    whatsapp_confirmation_template: str = Field(
        default_factory=_default_body("whatsapp_confirmation"),
    )
    whatsapp_follow_up_template: str = Field(
        default_factory=_default_body("whatsapp_follow_up"),
    )
    max_followup_calls: int = Field(default=3, ge=0)
    max_followup_messages: int = Field(default=2, ge=0)
    days_before_followup: int = Field(default=1, ge=0)
    send_message_before_call: bool = True

    @field_validator("call_start_time", "call_end_time")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        if not validate_hhmm(value):
            raise ValueError(f"Expected HH:MM, got {value!r}")
        return value

    @property
    def voice_configured(self) -> bool:
        """True when a voice provider API key is present."""
        return bool(self.retell_api_key)

    @property
    def messaging_configured(self) -> bool:
        """True when WhatsApp is enabled and Twilio credentials are complete."""
        return bool(
            self.whatsapp_enabled
            and self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )

    def require_voice(self) -> None:
        """Fail unless the voice provider is configured.

        Raises:
            ConfigurationError: If the Retell API key is missing.
        """
        if not self.voice_configured:
            raise ConfigurationError("Retell API key not configured")

    def require_messaging(self) -> None:
        """Fail unless WhatsApp messaging is enabled and configured.

        Raises:
            ConfigurationError: If WhatsApp is off or credentials are missing.
        """
        if not self.messaging_configured:
            raise ConfigurationError("WhatsApp not enabled or configured")

    def template_for(self, template_type: TemplateType) -> str:
        """Return the WhatsApp template body for a template type.

        Args:
            template_type: reminder, confirmation, or follow_up.

        Returns:
            Template text with ``{{placeholder}}`` markers.
        """
        if template_type == TemplateType.REMINDER:
            return self.whatsapp_reminder_template
        if template_type == TemplateType.CONFIRMATION:
            return self.whatsapp_confirmation_template
        if template_type == TemplateType.FOLLOW_UP:
            return self.whatsapp_follow_up_template
        raise ValueError(f"Unknown template type: {template_type}")

    def within_call_window(self, at: time) -> bool:
        """Check whether a local clock time is inside business hours.

        Args:
            at: Local wall-clock time.

        Returns:
            True if ``call_start_time <= at < call_end_time``.
        """
        start = parse_hhmm(self.call_start_time)
        end = parse_hhmm(self.call_end_time)
        return start <= at.replace(tzinfo=None) < end


_SETTING_FIELDS = tuple(
    name for name in ClinicSettings.model_fields if name != "clinic_id"
)


def settings_from_row(row: Setting) -> ClinicSettings:
    """Build ClinicSettings from a Setting row.

    Columns left NULL fall back to the model defaults, including the
    bundled template bodies.

    Args:
        row: Setting ORM instance.

    Returns:
        Immutable ClinicSettings.

    Raises:
        ConfigurationError: If a stored value is invalid.
    """
    values = {
        name: getattr(row, name)
        for name in _SETTING_FIELDS
        if getattr(row, name, None) not in (None, "")
    }
    try:
        return ClinicSettings(clinic_id=row.clinic_id, **values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc.errors()[0]['msg']}") from exc


async def get_setting_row(
    session: AsyncSession,
    clinic_id: uuid.UUID | None = None,
) -> Setting | None:
    """Fetch the effective Setting row.

    A clinic-specific row wins over the global row.

    Args:
        session: Active database session.
        clinic_id: Clinic to resolve settings for, or None for global.

    Returns:
        Setting row, or None when none exists.
    """
    if clinic_id is not None:
        result = await session.execute(select(Setting).where(Setting.clinic_id == clinic_id))
        row = result.scalar_one_or_none()
        if row is not None:
            return row
    result = await session.execute(select(Setting).where(Setting.clinic_id.is_(None)))
    return result.scalar_one_or_none()


async def load_clinic_settings(
    session: AsyncSession,
    clinic_id: uuid.UUID | None = None,
) -> ClinicSettings:
    """Load the effective settings for an operation.

    Args:
        session: Active database session.
        clinic_id: Clinic to resolve settings for, or None for global.

    Returns:
        Immutable ClinicSettings.

    Raises:
        ConfigurationError: If no Setting row exists.
    """
    row = await get_setting_row(session, clinic_id)
    if row is None:
        logger.error("settings_not_found", extra={"clinic_id": str(clinic_id)})
        raise ConfigurationError("Settings not found")
    return settings_from_row(row)


async def upsert_setting(
    session: AsyncSession,
    *,
    clinic_id: uuid.UUID | None = None,
    updated_by_id: uuid.UUID | None = None,
    **values: object,
) -> Setting:
    """Create or update the Setting row for a clinic (or the global row).

    Args:
        session: Active database session.
        clinic_id: Clinic owning the row, or None for global.
        updated_by_id: User making the change.
        **values: Setting columns to write.

    Returns:
        The stored Setting row.
    """
    unknown = set(values) - set(_SETTING_FIELDS)
    if unknown:
        raise ValueError(f"Unknown setting fields: {sorted(unknown)}")
    if clinic_id is None:
        result = await session.execute(select(Setting).where(Setting.clinic_id.is_(None)))
    else:
        result = await session.execute(select(Setting).where(Setting.clinic_id == clinic_id))
    row = result.scalar_one_or_none()
    if row is None:
        row = Setting(setting_id=uuid.uuid4(), clinic_id=clinic_id)
        session.add(row)
    for name, value in values.items():
        setattr(row, name, value)
    row.updated_by_id = updated_by_id
    await session.flush()
    return row
