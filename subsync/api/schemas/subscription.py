from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from subsync.payments.base import Plan
from subsync.utils.enums import BillingFrequency


class SubscriptionResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    application_id: Optional[int] = None
    plan_id: str
    external_plan_id: Optional[str] = None
    payment_method: str
    payment_id: Optional[str] = None
    status: str
    cancellation_source: str
    payment_status: str
    retry_count: int = 0
    retry_period_end: Optional[datetime] = None
    grace_period_end: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    last_payment_date: Optional[datetime] = None
    last_payment_error: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    billing_frequency: str
    customer_data: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(from_attributes=True)


class SubscriptionListResponse(BaseModel):
    items: List[SubscriptionResponse]
    total: int


class PlanSchema(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., gt=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    billing_frequency: str = Field(BillingFrequency.MONTHLY, pattern="^(weekly|monthly|quarterly|biannually|annually)$")
    external_plan_id: Optional[str] = None

    def to_plan(self) -> Plan:
        return Plan(
            id=self.id,
            name=self.name,
            price=self.price,
            currency=self.currency.upper(),
            billing_frequency=self.billing_frequency,
            external_plan_id=self.external_plan_id,
        )


class CheckoutRequest(BaseModel):
    payment_method: str = Field(..., max_length=20)
    plan: PlanSchema
    application_id: Optional[int] = None
    customer_data: Dict[str, Any] = Field(default_factory=dict)
    success_url: str = Field(..., max_length=1000)
    cancel_url: str = Field(..., max_length=1000)


class CheckoutResponse(BaseModel):
    session_key: str
    checkout_url: Optional[str] = None
    remote_subscription_id: Optional[str] = None


class CheckoutReturnResponse(BaseModel):
    state: str
    message: str
    subscription: Optional[SubscriptionResponse] = None


class ActionResponse(BaseModel):
    success: bool
    message: str
    code: Optional[str] = None
    subscription: Optional[SubscriptionResponse] = None


class BulkActionRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, max_length=500)


class BulkActionItem(BaseModel):
    id: int
    success: bool
    message: str
    code: Optional[str] = None


class BulkActionResponse(BaseModel):
    succeeded: int
    failed: int
    results: List[BulkActionItem]


class StatsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]


class SweepResponse(BaseModel):
    grace_cancelled: List[int]
    pending_cancelled: List[int]
    retry_expired: List[int]
    billing_failed: List[int]
    intents_purged: int
