"""
Email notifier.
Delivers one-time verification codes over SMTP.
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailNotifier:
    """SMTP sender. Only a sent / not-sent result is reported to callers."""

    def _send(self, to_email: str, subject: str, body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.SMTP_FROM
        msg["To"] = to_email
        msg.attach(MIMEText(body, "plain", "utf-8"))

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
            if settings.SMTP_USE_TLS:
                server.starttls()
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(msg)

    async def send_verification_code(self, to_email: str, code: str) -> bool:
        """
        Send a verification code.

        Args:
            to_email: Recipient
            code: One-time code

        Returns:
            True if the SMTP server accepted the message
        """
        minutes = settings.VERIFICATION_CODE_TTL_SECONDS // 60
        body = (
            f"Your {settings.APP_NAME} verification code is: {code}\n\n"
            f"The code expires in {minutes} minutes. If you did not request it, ignore this email."
        )

        try:
            await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: self._send(to_email, f"{settings.APP_NAME} verification code", body)
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send verification email to {to_email}: {e}")
            return False

        logger.info(f"Verification email sent to {to_email}")
        return True


# Global notifier instance
email_notifier = EmailNotifier()


def get_notifier() -> EmailNotifier:
    return email_notifier
