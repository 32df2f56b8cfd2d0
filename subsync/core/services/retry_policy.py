"""
Retry & grace windows.

Every predicate here is a pure function of a subscription's persisted timestamps and ``now``.
There is no scheduler-side state, so sweeps can run from any host, any number of times.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List

from subsync.core.config import Settings
from subsync.utils.enums import CancellationSource, PaymentStatus, SubscriptionStatus


@dataclass(frozen=True)
class RetryPolicy:
    retry_window: timedelta = timedelta(days=3)
    grace_period: timedelta = timedelta(days=7)
    retry_threshold: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            retry_window=settings.retry_window,
            grace_period=settings.grace_period,
            retry_threshold=settings.retry_threshold,
        )


def is_in_retry_window(subscription, now: datetime) -> bool:
    return (
        subscription.payment_status == PaymentStatus.FAILED
        and subscription.retry_period_end is not None
        and now <= subscription.retry_period_end
    )


def is_in_grace_window(subscription, now: datetime) -> bool:
    return (
        subscription.status == SubscriptionStatus.EXPIRED
        and subscription.grace_period_end is not None
        and now <= subscription.grace_period_end
    )


def is_grace_expired(subscription, now: datetime) -> bool:
    return (
        subscription.status == SubscriptionStatus.EXPIRED
        and subscription.grace_period_end is not None
        and now > subscription.grace_period_end
    )


def is_provisioned(subscription, now: datetime) -> bool:
    """Whether the downstream application should currently be live."""
    if subscription.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING_CANCELLATION):
        return True
    return is_in_grace_window(subscription, now)


def is_retry_window_lapsed(subscription, now: datetime) -> bool:
    return (
        subscription.status == SubscriptionStatus.ACTIVE
        and subscription.payment_status == PaymentStatus.FAILED
        and subscription.retry_period_end is not None
        and now > subscription.retry_period_end
    )


def is_billing_period_lapsed(subscription, now: datetime) -> bool:
    """Active, believed paid, yet past the end of the paid period."""
    return (
        subscription.status == SubscriptionStatus.ACTIVE
        and subscription.payment_status == PaymentStatus.PAID
        and subscription.end_date is not None
        and now > subscription.end_date
    )


def is_pending_cancellation_due(subscription, now: datetime) -> bool:
    """
    A pending cancellation completes at ``next_billing_date``. Without one, the paid period end
    plus a grace window applies (the window itself is opened by the first due sweep).
    """
    if subscription.status != SubscriptionStatus.PENDING_CANCELLATION:
        return False
    if subscription.next_billing_date is not None:
        return now >= subscription.next_billing_date
    if subscription.end_date is None or now < subscription.end_date:
        return False
    return subscription.grace_period_end is None or now >= subscription.grace_period_end


def needs_remote_cancel(subscription) -> bool:
    return subscription.cancellation_source != CancellationSource.PROVIDER


def sweep_expired(subscriptions: Iterable, now: datetime) -> List[int]:
    """Ids of expired subscriptions whose grace window has passed (to be cancelled)."""
    return [s.id for s in subscriptions if is_grace_expired(s, now)]


def select(subscriptions: Iterable, predicate, now: datetime) -> List[int]:
    return [s.id for s in subscriptions if predicate(s, now)]
