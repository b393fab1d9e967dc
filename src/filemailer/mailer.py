# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mail delivery capability.

Builds a plain-text message with one file attachment and hands it to an
SMTP server through aiosmtplib. STARTTLS is negotiated whenever the server
advertises it; ``use_tls`` switches to implicit TLS (port 465 style).
The attachment is read in a worker thread.

Every failure surfaces as :class:`~filemailer.errors.DeliveryError` whose
``fields["error"]`` carries the opaque transport message for the job log.

Example:
    Sending a staged file::

        mailer = Mailer(host="smtp.example.com", port=587, from_addr="bot@example.com")
        await mailer.deliver("alice@example.com", "Subject", "Body", "/tmp/x/report.pdf")
"""

from __future__ import annotations

import asyncio
import mimetypes
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from pathlib import Path

import aiosmtplib

from .config import Settings
from .errors import DeliveryError
from .logger import get_logger

SENDER_NAME = "filemailer"

logger = get_logger("Mailer")


def guess_mime(filename: str) -> tuple[str, str]:
    """Guess the MIME type for the given filename."""
    mt, _ = mimetypes.guess_type(filename)
    if not mt:
        return ("application", "octet-stream")
    maintype, subtype = mt.split("/", 1)
    return maintype, subtype


class Mailer:
    """Send single messages with one attachment over SMTP.

    Attributes:
        host: SMTP server host.
        port: SMTP server port.
        user: Login, optional.
        password: Password, optional.
        from_addr: Sender address.
        use_tls: Implicit TLS instead of opportunistic STARTTLS.
        timeout: Per-command SMTP timeout in seconds.
    """

    def __init__(
        self,
        host: str | None,
        port: int | None,
        from_addr: str | None,
        *,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        timeout: float = 60.0,
    ):
        self.host = host
        self.port = port
        self.from_addr = from_addr
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_from,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.port and self.from_addr)

    def build_message(self, recipient: str, subject: str, body: str, attachment_path: str | Path | None) -> EmailMessage:
        """Compose the message, reading the attachment from disk.

        Raises:
            OSError: If the attachment cannot be read.
        """
        msg = EmailMessage()
        msg["From"] = formataddr((SENDER_NAME, self.from_addr or ""))
        msg["To"] = recipient
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=(self.from_addr or "localhost").rpartition("@")[2] or None)
        msg.set_content(body)
        if attachment_path:
            path = Path(attachment_path)
            maintype, subtype = guess_mime(path.name)
            msg.add_attachment(path.read_bytes(), maintype=maintype, subtype=subtype, filename=path.name)
        return msg

    async def deliver(self, recipient: str, subject: str, body: str, attachment_path: str | Path | None) -> None:
        """Send one message.

        Raises:
            DeliveryError: On incomplete configuration, unreadable attachment
                or any SMTP/network failure.
        """
        if not self.configured:
            raise DeliveryError("email send failed", fields={"stage": "smtp", "error": "smtp config incomplete"})
        try:
            message = await asyncio.to_thread(self.build_message, recipient, subject, body, attachment_path)
        except OSError as exc:
            raise DeliveryError("email send failed", fields={"stage": "smtp", "error": f"attach file: {exc}"}) from exc

        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            use_tls=self.use_tls,
            start_tls=False if self.use_tls else None,
            timeout=self.timeout,
        )
        try:
            await smtp.connect()
            if self.user and self.password:
                await smtp.login(self.user, self.password)
            await smtp.send_message(message, sender=self.from_addr, recipients=[recipient])
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            raise DeliveryError(
                "email send failed",
                fields={"stage": "smtp", "error": str(exc) or exc.__class__.__name__},
            ) from exc
        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError):
                    logger.debug("SMTP quit failed for %s:%s", self.host, self.port)
        logger.info("Delivered message to %s via %s:%s", recipient, self.host, self.port)
