"""
Outbound email senders.

``send`` never raises for delivery problems; it reports success as a bool so
callers can decide whether to proceed.
"""

import logging
from typing import Optional, Protocol

import httpx

from ragchat.config import Settings

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0


class EmailSender(Protocol):
    async def send(self, to_email: str, subject: str, body: str) -> bool:
        """Deliver a plain-text email."""


class ConsoleEmailSender:
    """Development sender: writes the message to the log."""

    async def send(self, to_email: str, subject: str, body: str) -> bool:
        logger.info(f"[console email] to={to_email} subject={subject!r}\n{body}")
        return True


class ResendEmailSender:
    """Sends through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.transport = transport

    async def send(self, to_email: str, subject: str, body: str) -> bool:
        payload = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "text": body,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=RESEND_TIMEOUT_SECONDS, transport=self.transport
            ) as client:
                response = await client.post(RESEND_SEND_URL, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Email delivery to {to_email} failed: {e}")
            return False

        if 200 <= response.status_code < 300:
            return True

        logger.error(
            f"Email delivery to {to_email} rejected: {response.status_code} {response.text[:200]}"
        )
        return False


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.EMAIL_BACKEND == "resend":
        if not settings.RESEND_API_KEY:
            raise ValueError("EMAIL_BACKEND=resend requires RESEND_API_KEY")
        return ResendEmailSender(settings.RESEND_API_KEY, settings.EMAIL_FROM)
    return ConsoleEmailSender()
