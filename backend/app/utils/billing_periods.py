"""Billing period arithmetic for derived subscriptions"""
import logging
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

BILLING_PERIODS = ("day", "week", "month", "year")
DEFAULT_BILLING_PERIOD = "month"
DEFAULT_BILLING_INTERVAL = 1


def add_billing_period(start: datetime, period: str, interval: int) -> datetime:
    """Advance ``start`` by ``interval`` units of ``period``.

    Months and years are calendar arithmetic and clamp to the last day of the
    target month (Jan 31 + 1 month = Feb 28/29). An unknown unit returns
    ``start`` unchanged.
    """
    if period == "day":
        return start + timedelta(days=interval)
    if period == "week":
        return start + timedelta(days=interval * 7)
    if period == "month":
        return start + relativedelta(months=interval)
    if period == "year":
        return start + relativedelta(years=interval)

    logger.warning(f"Unrecognized billing period '{period}', next payment left at start date")
    return start


def parse_billing_interval(value) -> int:
    """Interval from line-item meta; empty or zero falls back to 1, non-numeric raises ValueError"""
    if value in (None, "", 0, "0"):
        return DEFAULT_BILLING_INTERVAL
    return int(value)
