import html
import logging
from typing import Protocol

import httpx

from gritsync.core.classifier import AppError, ErrorSeverity, ErrorType
from gritsync.core.config import settings

logger = logging.getLogger("gritsync.email")

SEND_TIMEOUT_S = 10.0


class EmailSender(Protocol):
    async def send(
        self, to: str, subject: str, html_body: str, from_: str | None = None
    ) -> str | None: ...


class ResendEmailSender:
    """Sends through the Resend HTTP API. Returns the provider message id."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        default_from: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.api_url = api_url or settings.RESEND_API_URL
        self.default_from = default_from or (
            f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"
        )
        self._client = client

    async def send(
        self, to: str, subject: str, html_body: str, from_: str | None = None
    ) -> str | None:
        if not self.api_key:
            raise AppError(
                "Email service is not configured.",
                error_type=ErrorType.SERVER,
                severity=ErrorSeverity.HIGH,
            )

        payload = {
            "from": from_ or self.default_from,
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self._client is not None:
            resp = await self._client.post(self.api_url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=SEND_TIMEOUT_S) as client:
                resp = await client.post(self.api_url, json=payload, headers=headers)
        resp.raise_for_status()

        message_id = resp.json().get("id")
        logger.info("email sent to=%s subject=%r id=%s", to, subject, message_id)
        return message_id


def get_email_sender() -> EmailSender:
    return ResendEmailSender()


def sender_identity(name: str, address: str) -> str:
    return f"{name} <{address}>" if name else address


def render_payment_email(name: str, amount: str, application_url: str) -> str:
    name = html.escape(name)
    application_url = html.escape(application_url, quote=True)
    return f"""<!DOCTYPE html>
<html>
  <head>
    <style>
      body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
      .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
      .header {{ background: #dc2626; color: white; padding: 20px; text-align: center; }}
      .content {{ padding: 20px; background: #f9f9f9; }}
      .button {{ display: inline-block; padding: 12px 24px; background: #dc2626;
                 color: white; text-decoration: none; border-radius: 6px; margin: 20px 0; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header"><h1>GRITSYNC</h1></div>
      <div class="content">
        <p>Hello {name},</p>
        <p>Your payment of {amount} has been processed successfully.</p>
        <p>Thank you for your payment!</p>
        <a href="{application_url}" class="button">View Application</a>
      </div>
    </div>
  </body>
</html>
"""
