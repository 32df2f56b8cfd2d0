"""
Date helpers for billing bookkeeping.

All timestamps are stored as naive UTC so SQLite and PostgreSQL round-trip them identically.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from subsync.utils.enums import BillingFrequency

_PERIODS = {
    BillingFrequency.WEEKLY: relativedelta(weeks=1),
    BillingFrequency.MONTHLY: relativedelta(months=1),
    BillingFrequency.QUARTERLY: relativedelta(months=3),
    BillingFrequency.BIANNUALLY: relativedelta(months=6),
    BillingFrequency.ANNUALLY: relativedelta(years=1),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix, any fraction length). None for empty or invalid input."""
    if not value:
        return None
    try:
        dt = isoparse(str(value).strip())
    except (ValueError, OverflowError):
        return None
    return to_naive_utc(dt)


def from_epoch(value: Union[int, str, None]) -> Optional[datetime]:
    """Epoch seconds (Stripe style) to naive UTC."""
    if value in (None, "", 0):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def calculate_end_date(billing_frequency: Optional[str], start: Optional[datetime] = None) -> datetime:
    """End of the billing period starting at ``start``; unknown frequencies bill monthly."""
    start = start or utcnow()
    period = _PERIODS.get((billing_frequency or "").lower(), _PERIODS[BillingFrequency.MONTHLY])
    return start + period
