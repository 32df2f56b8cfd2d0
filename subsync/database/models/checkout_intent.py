"""Checkout intent - purchase held between "redirected to provider" and "provider confirmed"."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from subsync.database.models.model_base import JsonType
from subsync.database.session import Base
from subsync.utils.dates import utcnow


class CheckoutIntentRecord(Base):
    __tablename__ = "checkout_intents"

    session_key: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    plan: Mapped[Dict[str, Any]] = mapped_column(JsonType, nullable=False)
    customer_data: Mapped[Dict[str, Any]] = mapped_column(JsonType, default=dict, nullable=False)
    checkout_data: Mapped[Dict[str, Any]] = mapped_column(JsonType, default=dict, nullable=False)

    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    remote_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<CheckoutIntentRecord key={self.session_key} expires_at={self.expires_at}>"
