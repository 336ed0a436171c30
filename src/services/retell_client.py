"""Retell AI voice-call service client.

Translates an internal call request into Retell's REST shape and
normalizes responses and failures. Every failure surfaces as
``ProviderError``; nothing is retried here, because a request that timed
out may still have placed the call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from src.shared.errors import ProviderError
from src.shared.types import CallStatus

logger = logging.getLogger(__name__)

RETELL_API_URL = "https://api.retellai.com"
PROVIDER = "retell"
CALLER_NAME = "Mayra"

_STATUS_MAP = {
    "registered": CallStatus.SCHEDULED,
    "scheduled": CallStatus.SCHEDULED,
    "ongoing": CallStatus.SCHEDULED,
    "in_progress": CallStatus.SCHEDULED,
    "ended": CallStatus.COMPLETED,
    "completed": CallStatus.COMPLETED,
    "call_ended": CallStatus.COMPLETED,
    "call_analyzed": CallStatus.COMPLETED,
    "no_answer": CallStatus.NO_ANSWER,
    "no-answer": CallStatus.NO_ANSWER,
    "dial_no_answer": CallStatus.NO_ANSWER,
    "not_connected": CallStatus.NO_ANSWER,
    "error": CallStatus.FAILED,
    "failed": CallStatus.FAILED,
    "dial_failed": CallStatus.FAILED,
    "dial_busy": CallStatus.FAILED,
}


@dataclass
class CallResult:
    """Result of an outbound call initiation.

    Attributes:
        call_id: Retell call identifier.
        status: Raw Retell call status.
    """

    call_id: str
    status: str


@dataclass
class CallStatusResult:
    """Current state of a call as reported by Retell.

    Attributes:
        status: Raw Retell call status.
        duration: Call length in seconds, once ended.
        transcript: Call transcript, once available.
        recording_url: Recording URL, once available.
    """

    status: str
    duration: float | None = None
    transcript: str | None = None
    recording_url: str | None = None


def normalize_call_status(raw: str | None) -> CallStatus | None:
    """Map a provider call status onto the internal call status.

    Args:
        raw: Status string from Retell or a callback payload.

    Returns:
        Internal CallStatus, or None for unrecognized values.
    """
    if not raw:
        return None
    return _STATUS_MAP.get(raw.strip().lower())


def build_dynamic_variables(
    *,
    patient_name: str | None = None,
    appointment_date: str | None = None,
    doctor_name: str | None = None,
    clinic_name: str | None = None,
    appointment_reason: str | None = None,
    clinic_phone: str | None = None,
    **extra: str,
) -> dict[str, str]:
    """Build Retell LLM dynamic variables with fallbacks.

    Args:
        patient_name: Patient display name.
        appointment_date: Formatted appointment date.
        doctor_name: Assigned doctor name.
        clinic_name: Clinic display name.
        appointment_reason: Reason for the visit.
        clinic_phone: Clinic callback number.
        **extra: Additional variables passed through unchanged.

    Returns:
        Dict of dynamic variable key-value pairs.
    """
    variables = {
        "patient_name": patient_name or "Patient",
        "appointment_date": appointment_date or "your upcoming appointment",
        "doctor_name": doctor_name or "your doctor",
        "clinic_name": clinic_name or "Medical Clinic",
        "caller_name": CALLER_NAME,
        "appointment_reason": appointment_reason or "your appointment",
        "clinic_phone": clinic_phone or "our main office number",
        "condition": "your condition",
        "last_appointment_date": "your last visit",
        "test_type": "your recent tests",
        "test_date": "recently",
        "medication_name": "your medication",
    }
    variables.update({k: str(v) for k, v in extra.items() if v is not None})
    return variables


def _error_message(response: httpx.Response) -> str:
    """Extract Retell's error message from a failed response."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if message:
            return str(message)
    return f"Retell API error: {response.status_code}"


class RetellClient:
    """Client for Retell AI outbound phone calls.

    Attributes:
        api_key: Retell API key.
        from_number: Default caller number; looked up from the account
            when empty.
    """

    def __init__(
        self,
        *,
        api_key: str,
        from_number: str = "",
        base_url: str = RETELL_API_URL,
        timeout: float = 30.0,
    ) -> None:
        """Initialize RetellClient.

        Args:
            api_key: Retell API key.
            from_number: Default caller number.
            base_url: Retell API base URL.
            timeout: Per-request timeout in seconds.
        """
        self.api_key = api_key
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict | list:
        """Send an authenticated request and decode the JSON body.

        Raises:
            ProviderError: On HTTP errors, timeouts, or network failures.
        """
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as exc:
            logger.warning("retell_request_timeout", extra={"path": path})
            raise ProviderError(
                PROVIDER,
                "Retell API request timed out; call outcome unknown",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("retell_request_failed", extra={"path": path})
            raise ProviderError(
                PROVIDER,
                "No response received from Retell API. Please check your internet connection.",
            ) from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "retell_api_error",
                extra={"path": path, "status_code": response.status_code},
            )
            raise ProviderError(PROVIDER, message, status_code=response.status_code)
        return response.json()

    async def resolve_from_number(self) -> str:
        """Return the caller number, falling back to the account's first number.

        Returns:
            Caller phone number.

        Raises:
            ProviderError: If the account has no numbers or the lookup fails.
        """
        if self.from_number:
            return self.from_number
        try:
            numbers = await self._request("GET", "/list-phone-numbers")
        except ProviderError as exc:
            raise ProviderError(
                PROVIDER,
                "Failed to fetch phone numbers from your Retell account. "
                "Please configure a caller number.",
                status_code=exc.status_code,
            ) from exc
        if isinstance(numbers, dict):
            numbers = numbers.get("data", [])
        for entry in numbers:
            if entry.get("phone_number"):
                return entry["phone_number"]
        raise ProviderError(
            PROVIDER,
            "No phone numbers available in your Retell account. "
            "Please purchase a number from Retell or configure a caller number.",
        )

    async def create_phone_call(
        self,
        *,
        to_number: str,
        script: str,
        dynamic_variables: dict[str, str] | None = None,
        callback_url: str | None = None,
        from_number: str | None = None,
    ) -> CallResult:
        """Place an outbound call.

        Args:
            to_number: Patient phone number (E.164).
            script: Rendered call script.
            dynamic_variables: Variables for the Retell agent prompt.
            callback_url: Webhook URL for call outcome events.
            from_number: Caller number overriding the default.

        Returns:
            CallResult with Retell's call id and status.

        Raises:
            ProviderError: If Retell rejects the request or is unreachable.
        """
        caller = from_number or await self.resolve_from_number()
        variables = dynamic_variables or {}
        payload: dict = {
            "from_number": caller,
            "to_number": to_number,
            "metadata": {"script": script, "variables": variables},
            "retell_llm_dynamic_variables": {**variables, "script": script},
        }
        if callback_url:
            payload["webhook_url"] = callback_url

        data = await self._request("POST", "/v2/create-phone-call", json=payload)
        result = CallResult(
            call_id=data.get("call_id", ""),
            status=data.get("call_status", "registered"),
        )
        logger.info(
            "retell_call_created",
            extra={"call_id": result.call_id, "status": result.status},
        )
        return result

    async def get_call(self, call_id: str) -> CallStatusResult:
        """Fetch the current state of a call.

        Args:
            call_id: Retell call id.

        Returns:
            CallStatusResult with status, duration, transcript, recording.

        Raises:
            ProviderError: If Retell rejects the request or is unreachable.
        """
        data = await self._request("GET", f"/v2/get-call/{call_id}")
        duration = None
        if data.get("end_timestamp") and data.get("start_timestamp"):
            duration = (data["end_timestamp"] - data["start_timestamp"]) // 1000
        status = data.get("call_status", "")
        if data.get("disconnection_reason") in ("dial_no_answer", "dial_failed", "dial_busy"):
            status = data["disconnection_reason"]
        return CallStatusResult(
            status=status,
            duration=duration,
            transcript=data.get("transcript"),
            recording_url=data.get("recording_url"),
        )
