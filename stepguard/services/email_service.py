import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from stepguard.core.config import Settings

logger = logging.getLogger(__name__)


def _format_context(context: Optional[Dict[str, Any]]) -> str:
    if not context:
        return ""
    lines = [f"- {key.replace('_', ' ')}: {value}" for key, value in context.items() if value is not None]
    return "\n\nDetails:\n" + "\n".join(lines)


class EmailNotifier:
    """
    Sends security alert and verification code emails over SMTP.

    ``send`` is best effort: delivery errors are logged and swallowed so an
    alert can never fail the action that triggered it.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def _deliver(self, to_email: str, subject: str, body: str):
        msg = MIMEMultipart()
        msg["From"] = self.settings.SMTP_USER
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT) as server:
            server.starttls()
            if self.settings.SMTP_USER:
                server.login(self.settings.SMTP_USER, self.settings.SMTP_PASS)
            server.sendmail(self.settings.SMTP_USER, to_email, msg.as_string())

    async def send(
        self,
        email: str,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        transactional: bool = False,
    ) -> bool:
        """
        ``transactional`` mail (verification codes) is sent even when alerts
        are switched off.
        """
        if not transactional and not self.settings.EMAIL_ALERTS_ENABLED:
            logger.info("Email alerts disabled, skipping '%s'", title)
            return False

        body = f"{message}{_format_context(context)}"
        try:
            # smtplib blocks, keep it off the event loop
            await asyncio.to_thread(self._deliver, email, title, body)
        except Exception:
            logger.exception("Email alert '%s' failed", title)
            return False

        logger.info("Email alert '%s' sent", title)
        return True
