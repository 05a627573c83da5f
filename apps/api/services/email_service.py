"""
Email Service

Handles sending membership emails: activation invitations after approval
and password resets.
Uses SMTP for now, can be swapped for SendGrid/Mailgun later.
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = getattr(settings, 'SMTP_SERVER', 'localhost')
        self.smtp_port = getattr(settings, 'SMTP_PORT', 587)
        self.smtp_username = getattr(settings, 'SMTP_USERNAME', None)
        self.smtp_password = getattr(settings, 'SMTP_PASSWORD', None)
        self.from_email = getattr(settings, 'FROM_EMAIL', 'noreply@coachportal.local')
        self.from_name = getattr(settings, 'FROM_NAME', 'Coach Portal')
        self.enabled = getattr(settings, 'EMAIL_ENABLED', False)

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email.

        Returns True if sent (or deliberately not sent because email is
        disabled), False if delivery failed.
        """
        if not self.enabled:
            logger.info(f"Email disabled, would send to {to_email}: {subject}")
            return True

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            if self.smtp_username and self.smtp_password:
                server = smtplib.SMTP(self.smtp_server, self.smtp_port)
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
                server.quit()
            else:
                # Local development - just log
                logger.info(f"Would send email to {to_email}: {subject}")
                logger.debug(f"Content: {html_content[:200]}...")

            return True

        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return False

    def send_activation_invite(self, to_email: str, activation_url: str, name: Optional[str] = None) -> bool:
        """
        Sent when an administrator approves a membership request, and for
        password resets of existing members. The link opens the set-password
        screen.
        """
        subject = "Your coaching membership: set your password"
        greeting = name or "there"
        html_content = (
            f"<h2>Hi {greeting},</h2>"
            "<p>Your membership has been approved. Choose a password to activate your account:</p>"
            f"<p><a href=\"{activation_url}\">Set my password</a></p>"
            f"<p>The link expires in {settings.ACTIVATION_TOKEN_TTL_MINUTES // 60} hours.</p>"
            "<p>If you did not ask for this, ignore this email.</p>"
        )
        text_content = (
            f"Hi {greeting},\n\n"
            "Your membership has been approved. Set your password here:\n"
            f"{activation_url}\n\n"
            "If you did not ask for this, ignore this email."
        )
        return self.send_email(to_email, subject, html_content, text_content)
