"""
Delivery Channels

One implementation per channel, all behind DeliveryChannel.send():
- EmailChannel: SMTP (STARTTLS), multipart plain + HTML
- SmsChannel: Twilio REST API over requests

Every call carries a timeout (DELIVERY_TIMEOUT_SECONDS, default 10).
Failures raise DeliveryError; timeouts raise DeliveryTimeoutError.
Channels never retry on their own: a failed delivery is terminal for
the reminder that requested it.
"""

import logging
import os
import smtplib
import socket
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import requests
from dotenv import load_dotenv

from ..exceptions import DeliveryError, DeliveryTimeoutError
from .templates import RenderedMessage

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_TIMEOUT = 10.0

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def delivery_timeout() -> float:
    return float(os.getenv("DELIVERY_TIMEOUT_SECONDS", DEFAULT_DELIVERY_TIMEOUT))


class DeliveryChannel(ABC):
    """
    Interface for outbound delivery.

    send() returns a provider message id (or None) on success and raises
    DeliveryError on any failure.
    """

    name: str = ""

    @abstractmethod
    def send(self, recipient: str, rendered: RenderedMessage) -> Optional[str]:
        pass


class EmailChannel(DeliveryChannel):
    """SMTP email delivery"""

    name = "email"

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.host = host or os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.port = int(port or os.getenv("SMTP_PORT", "587"))
        self.user = user if user is not None else os.getenv("SMTP_USER")
        self.password = password if password is not None else os.getenv("SMTP_PASS")
        self.sender = sender or os.getenv("SMTP_FROM") or self.user
        self.timeout = timeout if timeout is not None else delivery_timeout()

    def _build_message(self, recipient: str, rendered: RenderedMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = rendered.subject or ""
        msg["From"] = self.sender
        msg["To"] = recipient
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(rendered.body, "plain", "utf-8"))
        msg.attach(MIMEText(rendered.html_body(), "html", "utf-8"))
        return msg

    def send(self, recipient: str, rendered: RenderedMessage) -> Optional[str]:
        if not self.sender:
            raise DeliveryError("SMTP sender not configured (SMTP_FROM or SMTP_USER)", channel=self.name)

        msg = self._build_message(recipient, rendered)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.sender, [recipient], msg.as_string())

        except (socket.timeout, TimeoutError) as e:
            raise DeliveryTimeoutError(
                f"SMTP timeout after {self.timeout}s: {e}",
                channel=self.name,
                timeout_seconds=self.timeout,
            )
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery failed: {e}", channel=self.name)

        logger.info(f"Email sent to {recipient}: {rendered.subject}")
        return msg.get("Message-ID")


class SmsChannel(DeliveryChannel):
    """SMS delivery through the Twilio Messages API"""

    name = "sms"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID")
        self.auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN")
        self.from_number = from_number or os.getenv("TWILIO_PHONE_NUMBER")
        self.timeout = timeout if timeout is not None else delivery_timeout()
        self.session = session or requests.Session()

    def send(self, recipient: str, rendered: RenderedMessage) -> Optional[str]:
        if not self.account_sid or not self.auth_token:
            raise DeliveryError("Twilio credentials not configured", channel=self.name)
        if not self.from_number:
            raise DeliveryError("Twilio phone number not configured", channel=self.name)

        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

        try:
            response = self.session.post(
                url,
                data={"To": recipient, "From": self.from_number, "Body": rendered.body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
            response.raise_for_status()
            sid = response.json().get("sid")

        except requests.exceptions.Timeout:
            raise DeliveryTimeoutError(
                f"Twilio timeout after {self.timeout}s",
                channel=self.name,
                timeout_seconds=self.timeout,
            )
        except requests.exceptions.HTTPError as e:
            detail = ""
            try:
                detail = e.response.json().get("message", "")
            except ValueError:
                pass
            raise DeliveryError(
                f"Twilio returned {e.response.status_code}: {detail or e}",
                channel=self.name,
            )
        except ValueError:
            raise DeliveryError(
                f"Twilio returned {response.status_code} with an unreadable body",
                channel=self.name,
            )
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Twilio request failed: {e}", channel=self.name)

        logger.info(f"SMS sent to {recipient} (sid={sid})")
        return sid
