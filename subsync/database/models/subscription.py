"""Subscription model - local mirror of a provider-billed recurring subscription."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from subsync.database.models.model_base import JsonType, SqlAlchemyModel
from subsync.utils.enums import CancellationSource, PaymentStatus, SubscriptionStatus


class Subscription(SqlAlchemyModel):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("payment_method", "payment_id", name="uq_subscriptions_payment"),
    )

    user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    application_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_plan_id: Mapped[Optional[str]] = mapped_column(String(64))

    payment_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="manual",
    )  # manual, paypal, stripe
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )  # active, pending-cancellation, cancelled, expired
    cancellation_source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CancellationSource.NONE,
    )  # none, frontend, provider
    payment_status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=PaymentStatus.PAID,
    )  # paid, failed
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    retry_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime)
    grace_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_billing_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_payment_error: Mapped[Optional[str]] = mapped_column(Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Provider event ids of the most recent webhooks that changed this row, oldest first.
    # Redelivery of any of them is a no-op.
    recent_event_ids: Mapped[List[str]] = mapped_column(JsonType, default=list, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    billing_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")

    customer_data: Mapped[Dict[str, Any]] = mapped_column(
        JsonType,
        default=dict,
        nullable=False,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict copy handed to collaborators outside the session."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "application_id": self.application_id,
            "plan_id": self.plan_id,
            "external_plan_id": self.external_plan_id,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "status": self.status,
            "cancellation_source": self.cancellation_source,
            "payment_status": self.payment_status,
            "retry_count": self.retry_count,
            "retry_period_end": self.retry_period_end,
            "grace_period_end": self.grace_period_end,
            "next_billing_date": self.next_billing_date,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "last_payment_date": self.last_payment_date,
            "last_payment_error": self.last_payment_error,
            "cancelled_at": self.cancelled_at,
            "amount": self.amount,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "billing_frequency": self.billing_frequency,
            "customer_data": dict(self.customer_data or {}),
        }

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} payment={self.payment_method}:{self.payment_id} status={self.status}>"
