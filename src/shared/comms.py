"""Shared communications template loading and rendering.

Templates use ``{{placeholder}}`` markers. Rendering is plain marker
substitution: nothing in a template is evaluated, and a marker with no
matching variable is written back exactly as it appeared so that a
partially filled variable set still produces a usable script or message.
"""

import re
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

import yaml

_TEMPLATES_DIR = Path(__file__).parent.parent.parent / "comms_templates"

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DEFAULT_DOCTOR_NAME = "your doctor"
DEFAULT_APPOINTMENT_DATE = "your upcoming appointment"
DEFAULT_CLINIC_NAME = "our clinic"


def render(template: str, variables: Mapping[str, object]) -> str:
    """Substitute ``{{key}}`` placeholders in a template string.

    Call scripts and message templates are edited by clinic staff, so
    only bare ``{{name}}`` markers are recognized. Any other brace text,
    expressions included, passes through untouched. Substituted values
    are emitted as-is and never scanned again.

    Args:
        template: Template text with ``{{key}}`` markers.
        variables: Placeholder values keyed by name.

    Returns:
        Rendered text. Unknown placeholders are left verbatim.
    """

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_substitute, template)


def format_appointment_date(value: datetime | None) -> str:
    """Format an appointment timestamp for patient-facing text.

    Args:
        value: Appointment datetime, or None.

    Returns:
        Text such as "Monday, March 16 at 10:00 AM", or a generic
        phrase when no appointment date is known.
    """
    if value is None:
        return DEFAULT_APPOINTMENT_DATE
    hour = value.strftime("%I").lstrip("0") or "12"
    return f"{value:%A, %B} {value.day} at {hour}:{value:%M %p}"


def build_template_variables(
    *,
    patient_name: str,
    doctor_name: str | None = None,
    appointment_date: datetime | None = None,
    clinic_name: str | None = None,
    **extra: str,
) -> dict[str, str]:
    """Build the standard variable set for patient templates.

    Args:
        patient_name: Patient display name.
        doctor_name: Assigned doctor name, if any.
        appointment_date: Appointment timestamp, if any.
        clinic_name: Clinic display name, if any.
        **extra: Additional template variables.

    Returns:
        Dict of placeholder values with fallbacks applied.
    """
    variables = {
        "patient_name": patient_name,
        "doctor_name": doctor_name or DEFAULT_DOCTOR_NAME,
        "appointment_date": format_appointment_date(appointment_date),
        "clinic_name": clinic_name or DEFAULT_CLINIC_NAME,
    }
    variables.update({k: v for k, v in extra.items() if v is not None})
    return variables


def load_template(template_id: str) -> dict:
    """Load a communications template from YAML.

    Args:
        template_id: Template filename without extension.

    Returns:
        Parsed template dict with name, channel, body fields.

    Raises:
        FileNotFoundError: If template file does not exist.
    """
    path = _TEMPLATES_DIR / f"{template_id}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Template not found: {template_id}")
    with open(path) as f:
        return yaml.safe_load(f)


def default_template_body(template_id: str) -> str:
    """Return the body text of a bundled default template.

    Args:
        template_id: Template filename without extension.

    Returns:
        Template body string.
    """
    return load_template(template_id)["body"]
