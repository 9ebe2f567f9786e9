import logging
import smtplib
from email.mime.text import MIMEText

from .config import MailSettings

logger = logging.getLogger(__name__)


def send_email(settings: MailSettings, to_email: str, subject: str, html_body: str) -> None:
    """
    Send an HTML email over SMTP.

    Without SMTP_HOST the message is only logged (local development).
    SMTP_USE_SSL / SMTP_USE_TLS / SMTP_USE_AUTH pick the connection mode.
    """
    if not settings.smtp_host:
        logger.info("Email (dev) to=%s subject=%s body=%s", to_email, subject, html_body)
        return

    from_email = settings.sender_email

    msg = MIMEText(html_body, "html", "utf-8")
    msg["Subject"] = subject
    msg["From"] = from_email
    msg["To"] = to_email

    try:
        if settings.smtp_use_ssl:
            server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout)
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout)

        with server as s:
            s.ehlo()

            if settings.smtp_use_tls and not settings.smtp_use_ssl:
                s.starttls()
                s.ehlo()

            if settings.smtp_use_auth:
                if not settings.smtp_user or not settings.smtp_pass:
                    raise RuntimeError("SMTP_USE_AUTH=true but SMTP_USER/SMTP_PASS not set")
                s.login(settings.smtp_user, settings.smtp_pass)

            s.sendmail(from_email, [to_email], msg.as_string())

        logger.info("Email sent to=%s subject=%s", to_email, subject)

    except Exception as e:
        logger.exception("Email send failed to=%s error=%r", to_email, e)
        raise
