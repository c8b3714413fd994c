"""Completion email — tells the customer their headshots are ready.

Uses standard SMTP with TLS. Credentials stored in env vars:
- SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM

Security: Password stored in env var, never logged.
"""

from __future__ import annotations

import asyncio
import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol, runtime_checkable

from headshots.errors import NotificationError

logger = logging.getLogger(__name__)

_SUBJECT = "Your AI headshots are ready"


@runtime_checkable
class CompletionNotifier(Protocol):
    """Sends one completion notice per finished order."""

    async def send_completion_notice(
        self, contact: str, result_location: str, asset_count: int
    ) -> None:
        ...


class SmtpCompletionNotifier:
    """CompletionNotifier over SMTP."""

    def __init__(
        self,
        smtp_host: str | None = None,
        smtp_port: int | None = None,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        smtp_from: str | None = None,
    ):
        self._host = smtp_host or os.environ.get("SMTP_HOST", "")
        self._port = smtp_port or int(os.environ.get("SMTP_PORT", "587"))
        self._user = smtp_user or os.environ.get("SMTP_USER", "")
        self._password = smtp_password or os.environ.get("SMTP_PASSWORD", "")
        self._from = smtp_from or os.environ.get("SMTP_FROM", self._user)

    @property
    def is_configured(self) -> bool:
        return bool(self._host and self._from)

    def format_message(
        self, contact: str, result_location: str, asset_count: int
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = _SUBJECT
        msg["From"] = self._from
        msg["To"] = contact

        text_body = (
            f"Your {asset_count} professional headshots are ready.\n\n"
            f"View and download them here: {result_location}\n"
        )
        msg.attach(MIMEText(text_body, "plain"))

        html_body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px;">
            <h2 style="margin: 0 0 8px 0;">Your headshots are ready</h2>
            <p style="margin: 0 0 16px 0; color: #333;">
                We generated {asset_count} professional headshots for you.
            </p>
            <a href="{result_location}"
               style="background: #4f46e5; color: #fff; padding: 10px 18px;
                      border-radius: 6px; text-decoration: none;">View headshots</a>
        </div>
        """
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def _send(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=15) as server:
            server.starttls()
            if self._user and self._password:
                server.login(self._user, self._password)
            server.send_message(msg)

    async def send_completion_notice(
        self, contact: str, result_location: str, asset_count: int
    ) -> None:
        """Send the notice.

        Raises:
            NotificationError: SMTP not configured or the send failed
        """
        if not self.is_configured:
            raise NotificationError("Email not configured (missing SMTP_HOST/SMTP_FROM)")

        msg = self.format_message(contact, result_location, asset_count)
        try:
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP error: {e}") from e
        logger.info("Completion email sent (%d headshots)", asset_count)
