"""
Outbound email for one-time verification codes.

Falls back to logging the message when SMTP credentials are not configured,
which is how local development runs.
"""
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app import config
from app.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class EmailService:
    def __init__(self):
        self.smtp_host = config.SMTP_HOST
        self.smtp_port = config.SMTP_PORT
        self.smtp_user = config.SMTP_USER
        self.smtp_password = config.SMTP_PASSWORD
        self.from_email = config.FROM_EMAIL
        self.console_mode = not (self.smtp_user and self.smtp_password)

        if self.console_mode:
            logger.info("📧 Email service running in CONSOLE MODE (no SMTP configured)")

    async def send_email(self, to_email: str, subject: str, html_body: str):
        if self.console_mode:
            logger.info("📧 [console] to=%s subject=%s\n%s", to_email, subject, html_body)
            return
        try:
            await asyncio.to_thread(self._send_smtp, to_email, subject, html_body)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            raise ExternalServiceError("Error sending email. Please check email configuration.") from e

    def _send_smtp(self, to_email: str, subject: str, html_body: str):
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=config.SMTP_TIMEOUT_SECONDS) as server:
            server.starttls()
            server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)

    async def send_otp(self, to_email: str, fullname: str, otp: str):
        minutes = config.OTP_TTL_SECONDS // 60
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h2>Email Verification</h2>
          <p>Hello {fullname},</p>
          <p>Your OTP for email verification is:</p>
          <h1 style="letter-spacing: 5px;">{otp}</h1>
          <p>This OTP is valid for <strong>{minutes} minutes</strong>.</p>
          <p>If you didn't request this, please ignore this email.</p>
        </div>
        """
        await self.send_email(to_email, "Email Verification OTP - Flatmate Finder", html)


email_service = EmailService()
