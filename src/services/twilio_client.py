"""Twilio service client for WhatsApp messaging."""

import asyncio
import logging

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client as TwilioRestClient
from twilio.twiml.messaging_response import MessagingResponse

from src.shared.errors import ProviderError
from src.shared.types import MessageStatus
from src.shared.validators import to_e164

logger = logging.getLogger(__name__)

PROVIDER = "twilio"
WHATSAPP_PREFIX = "whatsapp:"

_STATUS_MAP = {
    "accepted": MessageStatus.QUEUED,
    "scheduled": MessageStatus.QUEUED,
    "queued": MessageStatus.QUEUED,
    "sending": MessageStatus.SENT,
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
    "undelivered": MessageStatus.FAILED,
    "canceled": MessageStatus.FAILED,
}


def normalize_message_status(raw: str | None) -> MessageStatus | None:
    """Map a Twilio message status onto the internal message status.

    Args:
        raw: Twilio ``MessageStatus`` value.

    Returns:
        Internal MessageStatus, or None for statuses that carry no
        delivery information (e.g. "received" on inbound messages).
    """
    if not raw:
        return None
    return _STATUS_MAP.get(raw.strip().lower())


def strip_whatsapp_prefix(address: str) -> str:
    """Remove the ``whatsapp:`` channel prefix from a Twilio address."""
    if address.lower().startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX):]
    return address


def format_whatsapp_address(phone: str) -> str:
    """Format a phone number as a Twilio WhatsApp address.

    Args:
        phone: Phone number in any format.

    Returns:
        ``whatsapp:+<digits>`` address.
    """
    return f"{WHATSAPP_PREFIX}{to_e164(strip_whatsapp_prefix(phone))}"


def empty_twiml() -> str:
    """Return an empty TwiML messaging response envelope."""
    return str(MessagingResponse())


class TwilioClient:
    """Stateless Twilio client for outbound messages.

    Attributes:
        account_sid: Twilio account SID.
        from_number: Twilio phone number for outbound.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        status_callback: str = "",
    ) -> None:
        """Initialize TwilioClient.

        Args:
            account_sid: Twilio account SID.
            auth_token: Twilio auth token.
            from_number: Twilio outbound phone number.
            status_callback: Delivery-status webhook URL, if any.
        """
        self.account_sid = account_sid
        self.from_number = from_number
        self.status_callback = status_callback
        self._client = TwilioRestClient(account_sid, auth_token)

    def _create(self, *, to: str, from_: str, body: str) -> str:
        """Create a message and normalize Twilio failures.

        Blocks on the REST request; async callers run it in a worker thread.

        Raises:
            ProviderError: If Twilio rejects the message.
        """
        kwargs = {"to": to, "from_": from_, "body": body}
        if self.status_callback:
            kwargs["status_callback"] = self.status_callback
        try:
            message = self._client.messages.create(**kwargs)
        except TwilioRestException as exc:
            logger.warning(
                "twilio_send_failed",
                extra={"to": to, "status_code": exc.status, "code": exc.code},
            )
            raise ProviderError(PROVIDER, exc.msg or str(exc), status_code=exc.status) from exc
        except TwilioException as exc:
            logger.warning("twilio_send_failed", extra={"to": to})
            raise ProviderError(PROVIDER, str(exc)) from exc
        return message.sid

    async def send_whatsapp(self, *, to: str, body: str) -> str:
        """Send a WhatsApp message.

        Args:
            to: Recipient phone number in any format.
            body: Message text.

        Returns:
            Message SID.
        """
        sid = await asyncio.to_thread(
            self._create,
            to=format_whatsapp_address(to),
            from_=format_whatsapp_address(self.from_number),
            body=body,
        )
        logger.info("whatsapp_sent", extra={"to": to, "sid": sid})
        return sid
