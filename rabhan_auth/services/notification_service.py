"""Outbound SMS and email delivery.

Senders raise :class:`NotificationError` when a message cannot be handed to
the gateway; callers decide whether that failure matters.
"""
import logging
from typing import Any, Dict, Protocol

import httpx

from rabhan_auth.services.errors import NotificationError

TWILIO_BASE_URL = "https://api.twilio.com/2010-04-01"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

logger = logging.getLogger(__name__)


class SmsSender(Protocol):
    def send_sms(self, phone: str, text: str) -> None:
        ...


class EmailSender(Protocol):
    def send_email(self, to: str, subject: str, html: str) -> None:
        ...

    def send_template_email(self, to: str, template_id: str, variables: Dict[str, Any]) -> None:
        ...


class TwilioSmsSender:
    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: float = 10):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    def send_sms(self, phone: str, text: str) -> None:
        url = f"{TWILIO_BASE_URL}/Accounts/{self.account_sid}/Messages.json"
        data = {"To": phone, "From": self.from_number, "Body": text}
        try:
            with httpx.Client(timeout=self.timeout, auth=(self.account_sid, self.auth_token)) as client:
                response = client.post(url, data=data)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"Twilio rejected SMS to {phone}: {exc}") from exc
        logger.info("SMS accepted by Twilio for %s sid=%s", phone, response.json().get("sid"))


class SendGridEmailSender:
    def __init__(self, api_key: str, from_email: str, from_name: str, timeout: float = 10):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def _post(self, to: str, body: Dict[str, Any]) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(SENDGRID_SEND_URL, json=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"SendGrid rejected email to {to}: {exc}") from exc
        logger.info("Email accepted by SendGrid for %s status=%s", to, response.status_code)

    def _sender(self) -> Dict[str, str]:
        return {"email": self.from_email, "name": self.from_name}

    def send_email(self, to: str, subject: str, html: str) -> None:
        self._post(
            to,
            {
                "personalizations": [{"to": [{"email": to}]}],
                "from": self._sender(),
                "subject": subject,
                "content": [{"type": "text/html", "value": html}],
            },
        )

    def send_template_email(self, to: str, template_id: str, variables: Dict[str, Any]) -> None:
        self._post(
            to,
            {
                "personalizations": [{"to": [{"email": to}], "dynamic_template_data": variables}],
                "from": self._sender(),
                "template_id": template_id,
            },
        )


class LoggingNotificationSender:
    """Writes outgoing messages to the log when no gateway is configured."""

    def send_sms(self, phone: str, text: str) -> None:
        logger.warning("SMS gateway not configured. Message for %s not delivered.", phone)
        logger.debug("Undelivered SMS for %s: %s", phone, text)

    def send_email(self, to: str, subject: str, html: str) -> None:
        logger.warning("Email gateway not configured. %r for %s not delivered.", subject, to)

    def send_template_email(self, to: str, template_id: str, variables: Dict[str, Any]) -> None:
        logger.warning("Email gateway not configured. Template %s for %s not delivered.", template_id, to)
