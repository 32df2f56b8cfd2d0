"""
Repository for Subscription database operations.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from subsync.database.models.subscription import Subscription
from subsync.database.repositories.repository import BaseRepository
from subsync.utils.enums import SubscriptionStatus


class SubscriptionRepository(BaseRepository[Subscription]):
    """Keyed storage for subscription records."""

    def __init__(self, session: Session):
        super().__init__(session, Subscription)

    def get_by_payment_id(self, payment_method: str, payment_id: str) -> Optional[Subscription]:
        """Webhook lookup: (payment_method, payment_id) identifies at most one row."""
        if not payment_id:
            return None
        return self.session.query(Subscription).filter(
            Subscription.payment_method == payment_method,
            Subscription.payment_id == payment_id,
        ).first()

    def apply_changes(self, subscription: Subscription, changes: Dict[str, Any]) -> Subscription:
        """Partial update of one row; the version column guards against lost updates."""
        for key, value in changes.items():
            if not hasattr(subscription, key):
                raise AttributeError(f"Subscription has no field {key!r}")
            setattr(subscription, key, value)
        self.session.flush()
        return subscription

    def list_by_status(self, *statuses: str) -> List[Subscription]:
        return self.session.query(Subscription).filter(
            Subscription.status.in_(statuses)
        ).order_by(Subscription.id).all()

    def _filtered(
        self,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        user_id: Optional[int] = None,
    ):
        query = self.session.query(Subscription)
        if status:
            query = query.filter(Subscription.status == status)
        if payment_method:
            query = query.filter(Subscription.payment_method == payment_method)
        if user_id is not None:
            query = query.filter(Subscription.user_id == user_id)
        return query

    def list_filtered(
        self,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        user_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Subscription]:
        """Filtered listing for the admin API."""
        query = self._filtered(status, payment_method, user_id)
        return query.order_by(Subscription.id.desc()).offset(skip).limit(limit).all()

    def count_filtered(
        self,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> int:
        return self._filtered(status, payment_method, user_id).count()

    def list_for_user(self, user_id: int) -> List[Subscription]:
        return self.list_filtered(user_id=user_id, limit=1000)

    def count_by_status(self) -> Dict[str, int]:
        """Number of subscriptions per status; every known status is present."""
        counts = {status: 0 for status in SubscriptionStatus.ALL}
        rows = self.session.execute(
            select(Subscription.status, func.count()).group_by(Subscription.status)
        ).all()
        for status, total in rows:
            counts[status] = total
        return counts
