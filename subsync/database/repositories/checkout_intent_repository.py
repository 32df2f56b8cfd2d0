"""
Pending-checkout cache backed by the ``checkout_intents`` table.

An intent is written when checkout begins and read (without deleting) by both the provider's
activation webhook and the browser's return redirect, whichever arrives first. It is only
discarded once the subscription has been durably created, or purged after its TTL.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from subsync.database.models.checkout_intent import CheckoutIntentRecord
from subsync.utils.dates import utcnow


@dataclass
class CheckoutIntent:
    """Not-yet-committed purchase."""
    session_key: str
    payment_method: str
    plan: Dict[str, Any]
    tax_amount: Decimal
    total_amount: Decimal
    customer_data: Dict[str, Any] = field(default_factory=dict)
    checkout_data: Dict[str, Any] = field(default_factory=dict)  # user_id, application_id
    remote_subscription_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: CheckoutIntentRecord) -> "CheckoutIntent":
        return cls(
            session_key=record.session_key,
            payment_method=record.payment_method,
            plan=dict(record.plan or {}),
            tax_amount=Decimal(record.tax_amount),
            total_amount=Decimal(record.total_amount),
            customer_data=dict(record.customer_data or {}),
            checkout_data=dict(record.checkout_data or {}),
            remote_subscription_id=record.remote_subscription_id,
            expires_at=record.expires_at,
        )


class CheckoutIntentCache:
    """TTL-bounded store of checkout intents keyed by session key."""

    def __init__(self, db: Session):
        self.db = db

    def put(self, intent: CheckoutIntent, ttl: timedelta, now: Optional[datetime] = None) -> CheckoutIntent:
        """Store an intent; an existing key is overwritten (re-checkout)."""
        now = now or utcnow()
        record = self.db.get(CheckoutIntentRecord, intent.session_key)
        if record is None:
            record = CheckoutIntentRecord(session_key=intent.session_key)
            self.db.add(record)
        record.payment_method = intent.payment_method
        record.plan = intent.plan
        record.customer_data = intent.customer_data
        record.checkout_data = intent.checkout_data
        record.tax_amount = intent.tax_amount
        record.total_amount = intent.total_amount
        record.remote_subscription_id = intent.remote_subscription_id
        record.created_at = now
        record.expires_at = now + ttl
        self.db.flush()
        intent.expires_at = record.expires_at
        return intent

    def take(self, session_key: str, now: Optional[datetime] = None) -> Optional[CheckoutIntent]:
        """Non-destructive read. Expired entries behave as missing."""
        if not session_key:
            return None
        record = self.db.get(CheckoutIntentRecord, session_key)
        if record is None:
            return None
        if record.expires_at <= (now or utcnow()):
            return None
        return CheckoutIntent.from_record(record)

    def attach_remote_id(self, session_key: str, remote_id: str) -> bool:
        record = self.db.get(CheckoutIntentRecord, session_key)
        if record is None:
            return False
        record.remote_subscription_id = remote_id
        self.db.flush()
        return True

    def discard(self, session_key: str) -> bool:
        record = self.db.get(CheckoutIntentRecord, session_key)
        if record is None:
            return False
        self.db.delete(record)
        self.db.flush()
        return True

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every intent whose TTL has elapsed. Returns the number removed."""
        result = self.db.execute(
            delete(CheckoutIntentRecord).where(CheckoutIntentRecord.expires_at <= (now or utcnow()))
        )
        return result.rowcount or 0
