"""
Notification sink for verification codes and poll results.

Delivery is best-effort: every send reports success as a bool and never
raises, so callers can fire and forget after their transaction has committed.
"""
import re
from typing import Optional, Protocol

import httpx
import structlog

from electionpoll.core.config import settings
from electionpoll.core.sanitization import mask_phone

logger = structlog.get_logger(__name__)


class NotificationSink(Protocol):
    def send(self, phone: str, message: str) -> bool:
        ...

    def send_code(self, phone: str, code: str, purpose: str) -> bool:
        ...


def winner_message(question: str) -> str:
    return (
        "🎉 *Congratulations!*\n\n"
        f"You have been selected as the winner of the poll \"{question}\"!\n\n"
        "We will contact you shortly."
    )


def poll_ended_message(question: str) -> str:
    return (
        "📊 *Poll ended*\n\n"
        f"The poll \"{question}\" has ended.\n\n"
        "Thank you for taking part!"
    )


class LogOnlyNotifier:
    """Sink used when no delivery channel is configured."""

    def send(self, phone: str, message: str) -> bool:
        logger.warning("notification_not_delivered", phone=mask_phone(phone), reason="sink_not_configured")
        return False

    def send_code(self, phone: str, code: str, purpose: str) -> bool:
        logger.warning(
            "verification_code_not_delivered",
            phone=mask_phone(phone),
            purpose=purpose,
            reason="sink_not_configured",
        )
        return False


class WhatsAppNotifier:
    """
    WhatsApp Cloud API sink.

    Codes go out through the approved ``verification_code`` authentication
    template (body text plus copy-code button); results as plain text messages.
    """

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        api_url: str = "https://graph.facebook.com/v24.0/",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.phone_number_id = phone_number_id
        self.api_url = api_url if api_url.endswith("/") else api_url + "/"
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

    @staticmethod
    def format_recipient(phone: str) -> str:
        """Digits only, with the 880 country code."""
        digits = re.sub(r"[^0-9]", "", phone)
        if digits.startswith("0"):
            digits = "880" + digits[1:]
        if not digits.startswith("880"):
            digits = "880" + digits
        return digits

    def _post(self, payload: dict, log_event: str, **log_fields) -> bool:
        url = f"{self.api_url}{self.phone_number_id}/messages"
        try:
            response = self._client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"{log_event}_failed",
                status_code=e.response.status_code,
                response=e.response.text[:500],
                **log_fields,
            )
            return False
        except httpx.HTTPError as e:
            logger.error(f"{log_event}_failed", error=str(e), **log_fields)
            return False

        message_id = None
        try:
            message_id = response.json().get("messages", [{}])[0].get("id")
        except (ValueError, IndexError, AttributeError):
            pass
        logger.info(f"{log_event}_sent", message_id=message_id, **log_fields)
        return True

    def send_code(self, phone: str, code: str, purpose: str) -> bool:
        payload = {
            "messaging_product": "whatsapp",
            "to": self.format_recipient(phone),
            "type": "template",
            "template": {
                "name": "verification_code",
                "language": {"code": "en_US"},
                "components": [
                    {"type": "body", "parameters": [{"type": "text", "text": code}]},
                    {
                        "type": "button",
                        "sub_type": "url",
                        "index": 0,
                        "parameters": [{"type": "text", "text": code}],
                    },
                ],
            },
        }
        return self._post(payload, "whatsapp_code", phone=mask_phone(phone), purpose=purpose)

    def send(self, phone: str, message: str) -> bool:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": self.format_recipient(phone),
            "type": "text",
            "text": {"preview_url": False, "body": message},
        }
        return self._post(payload, "whatsapp_message", phone=mask_phone(phone))

    def close(self) -> None:
        self._client.close()


_notifier: Optional[NotificationSink] = None


def get_notifier() -> NotificationSink:
    """Get the process-wide notification sink."""
    global _notifier
    if _notifier is None:
        if settings.whatsapp_configured:
            _notifier = WhatsAppNotifier(
                phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
                access_token=settings.WHATSAPP_ACCESS_TOKEN,
                api_url=settings.WHATSAPP_API_URL,
                timeout=settings.WHATSAPP_TIMEOUT_SECONDS,
            )
        else:
            _notifier = LogOnlyNotifier()
    return _notifier


def set_notifier(notifier: Optional[NotificationSink]) -> None:
    """Replace the process-wide sink (None resets to the configured default)."""
    global _notifier
    _notifier = notifier


def close_notifier() -> None:
    """Release the sink's HTTP client, if one was created."""
    global _notifier
    close = getattr(_notifier, "close", None)
    if close is not None:
        close()
    _notifier = None
