"""
Outgoing Mail

Password reset links and scheduled reports go out through SMTP when
SMTP_HOST is configured. Without it, messages are written to the log
instead (a development outbox). Reset links are only logged outside
production.

Delivery failures are logged and reported as False, never raised: a
failed email must not fail the request that triggered it.
"""
import smtplib
from email.message import EmailMessage
from typing import List, Optional, Sequence, Tuple

from finops_api.config import get_settings
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

# (file name, content, MIME type)
Attachment = Tuple[str, bytes, str]


def _dedupe_recipients(recipients: Sequence[str]) -> List[str]:
    seen = []
    for address in recipients:
        address = (address or "").strip()
        if address and address not in seen:
            seen.append(address)
    return seen


class Mailer:
    """Sends plain-text mail over SMTP, or logs it when SMTP is not configured."""

    def __init__(
        self,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        sender: str = "no-reply@finops.app"
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.sender = sender

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def build_message(
        self,
        to: Sequence[str],
        subject: str,
        body: str,
        attachments: Optional[List[Attachment]] = None
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(to)
        message["Subject"] = subject
        message.set_content(body)
        for file_name, content, media_type in attachments or []:
            maintype, _, subtype = media_type.partition("/")
            message.add_attachment(content, maintype=maintype, subtype=subtype or "octet-stream", filename=file_name)
        return message

    def send(
        self,
        to: Sequence[str],
        subject: str,
        body: str,
        attachments: Optional[List[Attachment]] = None,
        sensitive: bool = False
    ) -> bool:
        """
        Send one message to all recipients.

        sensitive bodies (reset links) are kept out of the log in production.
        """
        recipients = _dedupe_recipients(to)
        if not recipients:
            return False

        if not self.configured:
            if sensitive and settings.ENVIRONMENT == "production":
                logger.warning(f"SMTP not configured, mail to {recipients} dropped: {subject}")
                return False
            logger.info(f"Mail (outbox) to={recipients} subject={subject!r}\n{body}")
            return True

        message = self.build_message(recipients, subject, body, attachments)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Mail delivery failed to {recipients}: {e}")
            return False

        logger.info(f"Mail sent to {recipients}: {subject}")
        return True


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    """FastAPI dependency returning the process-wide mailer."""
    global _mailer
    if _mailer is None:
        _mailer = Mailer(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            starttls=settings.SMTP_STARTTLS,
            sender=settings.MAIL_FROM
        )
    return _mailer
