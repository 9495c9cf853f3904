"""Email service for account verification and password reset messages via SMTP."""
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from medtracker.config import get_settings

logger = logging.getLogger(__name__)


class EmailService:
    """Sends account emails; logs them instead when no SMTP host is configured."""

    def _send(self, to_email: str, subject: str, body: str) -> dict:
        settings = get_settings()
        if not settings.smtp_host:
            logger.info("SMTP not configured; email to %s not sent. Subject: %s\n%s", to_email, subject, body)
            return {"success": False, "logged": True, "to": to_email}

        try:
            message = MIMEMultipart()
            message["From"] = settings.email_from
            message["To"] = to_email
            message["Subject"] = subject
            message.attach(MIMEText(body, "plain"))

            with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
                server.starttls()
                if settings.smtp_user:
                    server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(message)

            logger.info("Email sent to %s (%s)", to_email, subject)
            return {"success": True, "to": to_email}

        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Failed to send email to %s: %s", to_email, e)
            return {"success": False, "error": str(e), "to": to_email}

    def send_verification_email(self, to_email: str, name: str, token: str) -> dict:
        link = f"{get_settings().client_url}/verify-email/{token}"
        body = f"""
Hello {name},

Welcome to MedTracker. Please confirm your email address by opening the link below:

{link}

If you did not create an account, you can ignore this message.

MedTracker
        """.strip()
        return self._send(to_email, "Verify your MedTracker email address", body)

    def send_password_reset_email(self, to_email: str, name: str, token: str, expires_minutes: int) -> dict:
        link = f"{get_settings().client_url}/reset-password/{token}"
        body = f"""
Hello {name},

We received a request to reset your MedTracker password. The link below is valid for {expires_minutes} minutes:

{link}

If you did not request a password reset, no action is needed.

MedTracker
        """.strip()
        return self._send(to_email, "Reset your MedTracker password", body)


email_service = EmailService()
