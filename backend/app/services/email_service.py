"""Email service - transactional email via Resend"""
import logging
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional

import resend
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.email_log import EmailLog

logger = logging.getLogger(__name__)

TEMPLATE_REMINDER_FIRST = "subscription_reminder_first"
TEMPLATE_REMINDER_FINAL = "subscription_reminder_final"

EMAIL_STATUS_SENT = "sent"
EMAIL_STATUS_FAILED = "failed"


@dataclass
class EmailSendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def validate_email_config() -> tuple[bool, str]:
    """
    Validate email service configuration.

    Returns:
        tuple: (is_valid, error_message)
    """
    if not settings.RESEND_API_KEY:
        return False, "RESEND_API_KEY is not set in environment variables"

    if not settings.RESEND_FROM_EMAIL:
        return False, "RESEND_FROM_EMAIL is not set in environment variables"

    return True, ""


def _sender() -> str:
    if settings.EMAIL_SENDER_NAME:
        return f"{settings.EMAIL_SENDER_NAME} <{settings.RESEND_FROM_EMAIL}>"
    return settings.RESEND_FROM_EMAIL


def _send_email(to: str, subject: str, html: str) -> EmailSendResult:
    """
    Internal helper function to send email via Resend API.

    Args:
        to: Recipient email address
        subject: Email subject
        html: HTML email content

    Returns:
        EmailSendResult with the provider message id on success
    """
    is_valid, config_error = validate_email_config()
    if not is_valid:
        logger.warning(f"Email not sent to {to}: {config_error}")
        return EmailSendResult(success=False, error=config_error)

    try:
        resend.api_key = settings.RESEND_API_KEY

        response = resend.Emails.send(
            {
                "from": _sender(),
                "to": to,
                "subject": subject,
                "html": html,
            }
        )

        # Resend returns a dict with 'id' on success, older clients an object
        email_id = None
        if isinstance(response, dict):
            email_id = response.get('id')
        elif hasattr(response, 'id'):
            email_id = response.id

        if email_id:
            logger.info(f"Email sent successfully to {to} (id: {email_id})")
            return EmailSendResult(success=True, message_id=email_id)

        logger.error(f"Email send returned invalid response: {response} (type: {type(response)})")
        return EmailSendResult(success=False, error=f"Invalid response from email provider: {response}")

    except Exception as exc:
        logger.error(f"Failed to send email to {to}: {exc}", exc_info=True)
        return EmailSendResult(success=False, error=str(exc))


def build_subscription_reminder(
    customer_name: str,
    product_name: str,
    expiry_date: datetime,
    days_left: int,
    urgent: bool
) -> tuple[str, str]:
    """Subject and HTML body for a subscription expiry reminder"""
    prefix = "URGENT: " if urgent else ""
    subject = f"{prefix}Subscription Reminder - {product_name} expires in {days_left} days"

    opener = "This is an urgent reminder" if urgent else "This is a friendly reminder"
    closing = "<p><strong>Don't wait - renew today to avoid service interruption!</strong></p>" if urgent else ""

    html = f"""
    <p>Dear {escape(customer_name)},</p>
    <p>{opener} that your subscription for <strong>{escape(product_name)}</strong>
    will expire in {days_left} days.</p>
    <p>Subscription details:</p>
    <ul>
        <li>Service: {escape(product_name)}</li>
        <li>Expiry date: {expiry_date.strftime('%Y-%m-%d')}</li>
    </ul>
    <p>To continue enjoying our services without interruption, please renew your
    subscription before the expiry date, either by contacting us directly or through our website.</p>
    {closing}
    <p>If you have any questions or need assistance, please don't hesitate to contact us.</p>
    <p>Best regards,<br>{escape(settings.EMAIL_SENDER_NAME)} Team</p>
    """
    return subject, html


def log_email(
    db: Session,
    to_email: str,
    subject: str,
    template: str,
    result: EmailSendResult,
    customer_id: Optional[int] = None,
    subscription_id: Optional[int] = None
) -> EmailLog:
    """Record one send attempt in email_logs"""
    entry = EmailLog(
        customer_id=customer_id,
        subscription_id=subscription_id,
        to_email=to_email,
        subject=subject,
        template=template,
        status=EMAIL_STATUS_SENT if result.success else EMAIL_STATUS_FAILED,
        provider_message_id=result.message_id,
        error_message=result.error
    )
    db.add(entry)
    db.commit()
    return entry


def send_subscription_reminder_email(
    db: Session,
    to_email: str,
    customer_name: str,
    product_name: str,
    expiry_date: datetime,
    days_left: int,
    urgent: bool,
    customer_id: Optional[int] = None,
    subscription_id: Optional[int] = None
) -> bool:
    """
    Send a subscription expiry reminder and log the attempt.

    Returns:
        bool: True on success, False on failure
    """
    subject, html = build_subscription_reminder(customer_name, product_name, expiry_date, days_left, urgent)
    result = _send_email(to_email, subject, html)

    log_email(
        db,
        to_email=to_email,
        subject=subject,
        template=TEMPLATE_REMINDER_FINAL if urgent else TEMPLATE_REMINDER_FIRST,
        result=result,
        customer_id=customer_id,
        subscription_id=subscription_id
    )
    return result.success
