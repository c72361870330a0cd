# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Email delivery of 2FA codes. Logs to console when SMTP not configured."""

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from fastapi import Request

from midden_server.config import Settings

logger = logging.getLogger(__name__)


class EmailSender:
    """SMTP client for one-time login codes.

    Built once from settings and handed to whoever issues codes; send
    failures are logged and reported as False, never raised.
    """

    def __init__(
        self,
        host: str | None,
        port: int = 587,
        user: str | None = None,
        password: str | None = None,
        from_address: str = "noreply@midden.local",
        sender_name: str = "Midden 2FA",
        code_ttl_minutes: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address
        self.sender_name = sender_name
        self.code_ttl_minutes = code_ttl_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailSender":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_address=settings.smtp_from,
            sender_name=settings.smtp_sender_name,
            code_ttl_minutes=settings.verification_code_ttl_minutes,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user)

    def build_message(self, to: str, code: str) -> MIMEMultipart:
        """Plain and HTML versions of the code email."""
        plain = f"Your 2FA login code is: {code}. It expires in {self.code_ttl_minutes} minutes."
        body_html = (
            f"<p>Your 2FA login code is: <strong>{html.escape(code)}</strong></p>"
            f"<p>It expires in {self.code_ttl_minutes} minutes.</p>"
        )
        msg = MIMEMultipart("alternative")
        msg["Subject"] = "Your Verification Code"
        msg["From"] = formataddr((self.sender_name, self.from_address))
        msg["To"] = to
        msg.attach(MIMEText(plain, "plain"))
        msg.attach(MIMEText(body_html, "html"))
        return msg

    def _send_smtp(self, to: str, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            server.starttls()
            server.login(self.user, self.password or "")
            server.sendmail(self.from_address, [to], msg.as_string())

    async def send_verification_code(self, to: str, code: str) -> bool:
        """Deliver a login code. Returns False on failure."""
        if not self.configured:
            logger.info("Email (SMTP not configured): To=%s code=%s", to, code)
            return True
        msg = self.build_message(to, code)
        try:
            await asyncio.to_thread(self._send_smtp, to, msg)
        except (OSError, smtplib.SMTPException):
            logger.exception("Failed to send verification email to %s", to)
            return False
        return True


def get_email_sender(request: Request) -> EmailSender:
    """Dependency returning the sender attached to the application."""
    return request.app.state.email_sender
