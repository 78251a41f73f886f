"""Certificate delivery over SMTP.

Delivery is best-effort: a failure is logged and never propagates to the
caller, so a certificate that was generated stays generated. When SMTP_HOST
is not configured the service only logs what it would have sent.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from core.config import Settings, get_settings
from rendering.qr import verification_url

logger = logging.getLogger(__name__)

SMTP_SSL_PORT = 465
SENDER_NAME = "Certificate Issuer"


def attachment_name(recipient_name: str) -> str:
    return f"certificate_{'_'.join(recipient_name.split())}.pdf"


def build_message(
    settings: Settings,
    *,
    name: str,
    to: str,
    pdf_path: Path,
    verification_code: str,
) -> EmailMessage:
    link = verification_url(verification_code)
    sender = settings.smtp_from or settings.smtp_user

    msg = EmailMessage()
    msg["Subject"] = f"Your certificate is ready, {name}!"
    msg["From"] = f"{SENDER_NAME} <{sender}>"
    msg["To"] = to
    msg.set_content(
        f"Congratulations {name}!\n\n"
        "Your certificate has been generated and is attached to this email.\n\n"
        f"Verify it at: {link}\n"
    )
    msg.add_alternative(
        f"<h2>Congratulations {html.escape(name)}</h2>"
        "<p>Your certificate has been generated and is attached to this email.</p>"
        f'<p><a href="{html.escape(link)}">Verify Certificate</a></p>',
        subtype="html",
    )
    msg.add_attachment(
        pdf_path.read_bytes(),
        maintype="application",
        subtype="pdf",
        filename=attachment_name(name),
    )
    return msg


class MailService:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return self.settings.mail_enabled

    def _send(self, msg: EmailMessage) -> None:
        s = self.settings
        if s.smtp_port == SMTP_SSL_PORT:
            server: smtplib.SMTP = smtplib.SMTP_SSL(s.smtp_host, s.smtp_port)
        else:
            server = smtplib.SMTP(s.smtp_host, s.smtp_port)
            if s.smtp_use_tls:
                server.starttls()
        try:
            if s.smtp_user:
                server.login(s.smtp_user, s.smtp_password)
            server.send_message(msg)
        finally:
            server.quit()

    async def send_certificate(
        self,
        name: str,
        to: str,
        pdf_path: Path,
        verification_code: str,
    ) -> bool:
        """Email the certificate PDF with its verification link.

        Returns True when the message was handed to the SMTP server.
        """
        if not self.enabled:
            logger.info(
                "mail.disabled",
                extra={"to": to, "verification_code": verification_code},
            )
            return False

        try:
            msg = build_message(
                self.settings,
                name=name,
                to=to,
                pdf_path=pdf_path,
                verification_code=verification_code,
            )
            await asyncio.to_thread(self._send, msg)
        except (OSError, smtplib.SMTPException) as e:
            logger.warning(
                "mail.failed",
                extra={
                    "to": to,
                    "verification_code": verification_code,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return False

        logger.info(
            "mail.sent",
            extra={"to": to, "verification_code": verification_code},
        )
        return True
