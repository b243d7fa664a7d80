"""Subscription expiry reminders.

Active subscriptions are checked against their expiry (``end_date``, else
``next_payment_date``). A first notice goes out inside the first-notice
window, an urgent final notice inside the final window, and subscriptions
past expiry are marked expired. Reminder flags are only set after a
successful send so a failed email is retried on the next run.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.logging import reminders_logger
from app.core.metrics import reminders_sent_counter
from app.models.subscription import WooCommerceSubscription
from app.services.email_service import send_subscription_reminder_email

logger = logging.getLogger(__name__)

NOTICE_FIRST = "first"
NOTICE_FINAL = "final"

SUBSCRIPTION_STATUS_ACTIVE = "active"
SUBSCRIPTION_STATUS_EXPIRED = "expired"

DEFAULT_PRODUCT_NAME = "your subscription"
SECONDS_PER_DAY = 24 * 60 * 60


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_expiry_date(subscription: WooCommerceSubscription) -> Optional[datetime]:
    expiry = subscription.end_date or subscription.next_payment_date
    return _as_utc(expiry) if expiry else None


def days_until(expiry: datetime, now: datetime) -> int:
    """Whole days left, rounded up (12 hours left counts as 1 day)"""
    return math.ceil((expiry - now).total_seconds() / SECONDS_PER_DAY)


def select_notice(days_left: int, subscription: WooCommerceSubscription) -> Optional[str]:
    """Which reminder is due, if any"""
    first_days = settings.REMINDER_FIRST_NOTICE_DAYS
    final_days = settings.REMINDER_FINAL_NOTICE_DAYS

    if final_days < days_left <= first_days and not subscription.reminder_first_sent:
        return NOTICE_FIRST
    if 0 < days_left <= final_days and not subscription.reminder_final_sent:
        return NOTICE_FINAL
    return None


def _product_name(subscription: WooCommerceSubscription) -> str:
    if subscription.product is not None and subscription.product.name:
        return subscription.product.name
    return DEFAULT_PRODUCT_NAME


def process_subscription_reminders(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Run one reminder pass over all active subscriptions.

    Returns:
        dict with the reminders sent, failed sends, and subscriptions expired
    """
    now = _as_utc(now) if now else datetime.now(timezone.utc)

    subscriptions = (
        db.query(WooCommerceSubscription)
        .options(
            joinedload(WooCommerceSubscription.customer),
            joinedload(WooCommerceSubscription.product)
        )
        .filter(WooCommerceSubscription.status == SUBSCRIPTION_STATUS_ACTIVE)
        .all()
    )

    reminders: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []
    expired: List[int] = []

    for subscription in subscriptions:
        expiry = get_expiry_date(subscription)
        if expiry is None:
            logger.debug(f"Subscription {subscription.id} has no expiry date, skipping")
            continue

        days_left = days_until(expiry, now)

        if days_left <= 0:
            subscription.status = SUBSCRIPTION_STATUS_EXPIRED
            db.commit()
            expired.append(subscription.id)
            reminders_logger.info(f"Subscription {subscription.id} expired on {expiry.isoformat()}")
            continue

        notice = select_notice(days_left, subscription)
        if notice is None:
            continue

        customer = subscription.customer
        if customer is None or not customer.email:
            logger.warning(f"Subscription {subscription.id} has no customer email, skipping reminder")
            continue

        sent = send_subscription_reminder_email(
            db,
            to_email=customer.email,
            customer_name=customer.name or customer.email,
            product_name=_product_name(subscription),
            expiry_date=expiry,
            days_left=days_left,
            urgent=notice == NOTICE_FINAL,
            customer_id=customer.id,
            subscription_id=subscription.id
        )

        entry = {
            "subscription_id": subscription.id,
            "notice": notice,
            "customer": customer.name,
            "days_left": days_left,
        }

        if not sent:
            reminders_logger.warning(f"{notice} reminder for subscription {subscription.id} failed, will retry next run")
            failed.append(entry)
            continue

        if notice == NOTICE_FIRST:
            subscription.reminder_first_sent = True
        else:
            subscription.reminder_final_sent = True
        db.commit()

        reminders_sent_counter.labels(notice=notice).inc()
        reminders_logger.info(f"Sent {notice} reminder for subscription {subscription.id} ({days_left} days left)")
        reminders.append(entry)

    return {
        "checked": len(subscriptions),
        "reminders": reminders,
        "failed": failed,
        "expired": expired,
    }
