"""
Email notifications over SMTP.

Best-effort: send failures are logged and reported as False.
"""

import smtplib
from decimal import Decimal
from email.message import EmailMessage
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class EmailSender:
    """Sends plain-text alert emails through an SMTP relay."""

    def __init__(self, host: str, port: int = 25, from_email: str = "alerts@localhost"):
        self.host = host
        self.port = port
        self.from_email = from_email

    def send(self, to: str, subject: str, body: str) -> bool:
        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("email_delivery_failed", to=to, error=str(e))
            return False
        return True

    def send_high_usage_alert(
        self,
        to: str,
        current_spend: Decimal,
        threshold: Decimal,
        name: Optional[str] = None,
    ) -> bool:
        greeting = f"Hi {name}," if name else "Hi,"
        body = (
            f"{greeting}\n\n"
            f"Your usage has reached ${current_spend:,.2f}, which is at or above "
            f"your alert threshold of ${threshold:,.2f}.\n\n"
            "Review your keys and limits in the console to avoid interruptions.\n"
        )
        return self.send(to, "High usage alert", body)
