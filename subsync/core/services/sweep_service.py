"""
Sweep Service - time-driven transitions.

Webhooks cover most of the lifecycle, but some transitions only happen because time passed:
grace windows running out, pending cancellations reaching their date, retry windows lapsing,
and paid periods ending without a renewal. Each sweep selects candidates with the pure
predicates in retry_policy, then applies the matching event through SubscriptionService so
every change is serialized with concurrent webhooks. Sweeps are idempotent.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from subsync.core.exceptions import ConcurrentUpdateError, SubscriptionNotFound
from subsync.core.services import retry_policy
from subsync.core.services.state_machine import Event
from subsync.core.services.subscription_service import SubscriptionService
from subsync.database.repositories.checkout_intent_repository import CheckoutIntentCache
from subsync.database.repositories.subscription_repository import SubscriptionRepository
from subsync.database.session import get_session
from subsync.utils.dates import utcnow
from subsync.utils.enums import EventKind, SubscriptionStatus

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    grace_cancelled: List[int] = field(default_factory=list)
    pending_cancelled: List[int] = field(default_factory=list)
    retry_expired: List[int] = field(default_factory=list)
    billing_failed: List[int] = field(default_factory=list)
    intents_purged: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SubscriptionSweeper:
    def __init__(self, service: SubscriptionService, session_factory: Callable = get_session):
        self.service = service
        self.session_factory = session_factory

    def sweep_expired(self, now: Optional[datetime] = None) -> List[int]:
        """Cancel expired subscriptions whose grace window has passed."""
        now = now or utcnow()
        with self.session_factory() as db:
            candidates = retry_policy.sweep_expired(
                SubscriptionRepository(db).list_by_status(SubscriptionStatus.EXPIRED), now
            )
        return self._apply_all(candidates, EventKind.GRACE_PERIOD_SWEEP, now, SubscriptionStatus.CANCELLED)

    def sweep_pending_cancellations(self, now: Optional[datetime] = None) -> List[int]:
        now = now or utcnow()
        candidates = self._select(
            (SubscriptionStatus.PENDING_CANCELLATION,), retry_policy.is_pending_cancellation_due, now
        )
        return self._apply_all(
            candidates, EventKind.PENDING_CANCELLATION_DUE, now, SubscriptionStatus.CANCELLED
        )

    def sweep_retry_windows(self, now: Optional[datetime] = None) -> List[int]:
        """Expire active subscriptions whose payment retry window has lapsed."""
        now = now or utcnow()
        candidates = self._select((SubscriptionStatus.ACTIVE,), retry_policy.is_retry_window_lapsed, now)
        return self._apply_all(candidates, EventKind.RETRY_WINDOW_LAPSED, now, SubscriptionStatus.EXPIRED)

    def sweep_billing_periods(self, now: Optional[datetime] = None) -> List[int]:
        """Treat a paid period that ended without a renewal payment as a failed payment."""
        now = now or utcnow()
        candidates = self._select((SubscriptionStatus.ACTIVE,), retry_policy.is_billing_period_lapsed, now)
        return self._apply_all(candidates, EventKind.BILLING_PERIOD_LAPSED, now, None)

    def purge_checkout_intents(self, now: Optional[datetime] = None) -> int:
        with self.session_factory() as db:
            purged = CheckoutIntentCache(db).purge_expired(now or utcnow())
        if purged:
            logger.info(f"Purged {purged} expired checkout intents")
        return purged

    def run_all(self, now: Optional[datetime] = None) -> SweepReport:
        """All sweeps, ordered so one run can walk a subscription through several steps."""
        now = now or utcnow()
        report = SweepReport(
            billing_failed=self.sweep_billing_periods(now),
            retry_expired=self.sweep_retry_windows(now),
            pending_cancelled=self.sweep_pending_cancellations(now),
            grace_cancelled=self.sweep_expired(now),
            intents_purged=self.purge_checkout_intents(now),
        )
        logger.info(f"Sweep finished: {report.to_dict()}")
        return report

    def _select(self, statuses, predicate, now: datetime) -> List[int]:
        with self.session_factory() as db:
            return retry_policy.select(SubscriptionRepository(db).list_by_status(*statuses), predicate, now)

    def _apply_all(
        self, subscription_ids: List[int], kind: str, now: datetime, target: Optional[str]
    ) -> List[int]:
        """
        Apply ``kind`` to each id. Returns the ids that changed (and reached ``target`` when given).
        One failing subscription is logged and skipped.
        """
        changed = []
        for subscription_id in subscription_ids:
            try:
                result, _ = self.service.apply(subscription_id, Event(kind=kind, occurred_at=now))
            except SubscriptionNotFound:
                continue
            except ConcurrentUpdateError as e:
                logger.warning(f"{kind}: {e}")
                continue
            except Exception:
                logger.exception(f"{kind} failed for subscription {subscription_id}")
                continue
            if result.is_noop:
                continue
            if target is None or result.to_status == target:
                changed.append(subscription_id)
        if subscription_ids:
            logger.info(f"{kind}: {len(changed)}/{len(subscription_ids)} subscriptions transitioned")
        return changed
