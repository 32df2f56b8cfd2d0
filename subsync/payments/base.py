"""
Gateway Adapter - Abstract base for payment gateways.

Implementations: PayPalGateway, StripeGateway, ManualGateway.

Adapters are pure boundary calls: they never touch local state, and they never raise for
provider failures. Every remote operation returns either its result or a GatewayError value,
so call sites must handle failure explicitly:

    result = gateway.cancel_remote(remote_id)
    if isinstance(result, GatewayError):
        logger.warning(f"Cancel failed: {result}")
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

from subsync.core.config import GatewayConfig


@dataclass
class GatewayError:
    """Failure of a call to the payment provider."""
    message: str
    status_code: Optional[int] = None
    retryable: bool = False
    details: Optional[Any] = None

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


@dataclass
class Plan:
    """Billing plan snapshot used at checkout."""
    id: str
    name: str
    price: Decimal
    currency: str = "USD"
    billing_frequency: str = "monthly"
    external_plan_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "currency": self.currency,
            "billing_frequency": self.billing_frequency,
            "external_plan_id": self.external_plan_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Plan":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            price=Decimal(str(data["price"])),
            currency=str(data.get("currency") or "USD"),
            billing_frequency=str(data.get("billing_frequency") or "monthly"),
            external_plan_id=data.get("external_plan_id"),
        )


@dataclass
class RemoteSubscription:
    """Result of creating a subscription at the provider."""
    remote_id: str
    approval_url: Optional[str] = None


@dataclass
class RemoteStatus:
    """Provider-side view of a subscription."""
    remote_id: str
    state: str  # RemoteState
    next_billing_time: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayEvent:
    """Provider webhook translated into provider-neutral terms."""
    event_type: str  # raw provider event type
    kind: Optional[str]  # EventKind; None means acknowledge without a transition
    remote_id: Optional[str] = None
    event_id: Optional[str] = None
    reference: Optional[str] = None  # checkout session key echoed back by the provider
    remote_status: Optional[str] = None
    next_billing_time: Optional[datetime] = None
    payload: Dict[str, Any] = field(default_factory=dict)


RemoteResult = Union[bool, GatewayError]


class GatewayAdapter(ABC):
    """Abstract payment gateway. One implementation per provider."""

    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @abstractmethod
    def get_name(self) -> str:
        """Provider key (matches Subscription.payment_method)."""
        pass

    @abstractmethod
    def create_remote_subscription(
        self,
        plan: Plan,
        customer: Dict[str, Any],
        success_url: str,
        cancel_url: str,
        reference: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> Union[RemoteSubscription, GatewayError]:
        """Create the subscription at the provider. ``reference`` is echoed back in webhooks."""
        pass

    @abstractmethod
    def cancel_remote(self, remote_id: str) -> RemoteResult:
        pass

    @abstractmethod
    def suspend_remote(self, remote_id: str) -> RemoteResult:
        pass

    @abstractmethod
    def reactivate_remote(self, remote_id: str) -> RemoteResult:
        pass

    @abstractmethod
    def fetch_remote_status(self, remote_id: str) -> Union[RemoteStatus, GatewayError]:
        pass

    @abstractmethod
    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        """Translate a webhook envelope. Raises WebhookPayloadError on malformed input."""
        pass

    def get_access_token(self) -> Union[Optional[str], GatewayError]:
        """Auth token for provider calls. Gateways without one return None."""
        return None

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str], payload: Dict[str, Any]) -> bool:
        """Authenticate an inbound webhook. Optional override; accepts by default."""
        return True

    def schedule_cancel_remote(self, remote_id: str) -> RemoteResult:
        """Stop renewal at period end. Optional override for gateways that support it."""
        return True

    def resume_remote(self, remote_id: str) -> RemoteResult:
        """Undo schedule_cancel_remote. Optional override."""
        return True
