"""
Email Service

Outbound email for notifications and membership cards.
Uses SMTP; failures are logged and reported as False, never raised.
"""

import smtplib
from datetime import date
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.enabled = settings.EMAIL_ENABLED

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email.

        Returns True if sent successfully, False otherwise.
        """
        if not self.enabled:
            logger.info(f"Email disabled, would send to {to_email}: {subject}")
            return False

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

            return True

        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}", exc_info=True)
            return False

    def send_notification(self, to_email: str, name: Optional[str], title: str, message: str) -> bool:
        html = (
            f"<p>Hi {escape(name or 'there')},</p>"
            f"<h3>{escape(title)}</h3>"
            f"<p>{escape(message)}</p>"
        )
        return self.send_email(to_email, title, html, text_content=f"{title}\n\n{message}")

    def send_membership_card(
        self,
        to_email: str,
        name: Optional[str],
        plan_name: str,
        start_date: Optional[date],
        end_date: Optional[date],
        checkin_code: str,
    ) -> bool:
        """Membership confirmation with the code the front desk scans at check-in."""
        subject = "Your membership is active"
        valid = f"{start_date.isoformat() if start_date else '?'} to {end_date.isoformat() if end_date else '?'}"
        html = (
            f"<h2>Welcome, {escape(name or 'member')}!</h2>"
            f"<p>Your <strong>{escape(plan_name)}</strong> membership has been confirmed.</p>"
            f"<p>Valid: {valid}</p>"
            "<p>Show this check-in code at the front desk:</p>"
            f"<pre>{escape(checkin_code)}</pre>"
        )
        text = (
            f"Your {plan_name} membership has been confirmed.\n"
            f"Valid: {valid}\n"
            f"Check-in code: {checkin_code}\n"
        )
        return self.send_email(to_email, subject, html, text_content=text)


# Global instance
email_service = EmailService()
