"""
Manual Gateway - subscriptions paid outside any provider.

No gateway integration. Checkout "approves" immediately: the approval URL is the success URL,
and the return redirect materializes the subscription. Every remote operation succeeds locally.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from subsync.core.exceptions import WebhookPayloadError
from subsync.payments.base import GatewayAdapter, GatewayEvent, Plan, RemoteStatus, RemoteSubscription
from subsync.utils.enums import PaymentMethod, RemoteState


class ManualGateway(GatewayAdapter):
    """Gateway that does not talk to a provider. Admin confirms payments manually."""

    def get_name(self) -> str:
        return PaymentMethod.MANUAL

    def create_remote_subscription(
        self,
        plan: Plan,
        customer: Dict[str, Any],
        success_url: str,
        cancel_url: str,
        reference: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> RemoteSubscription:
        return RemoteSubscription(remote_id=f"manual-{reference}", approval_url=success_url)

    def cancel_remote(self, remote_id: str) -> bool:
        return True

    def suspend_remote(self, remote_id: str) -> bool:
        return True

    def reactivate_remote(self, remote_id: str) -> bool:
        return True

    def fetch_remote_status(self, remote_id: str) -> RemoteStatus:
        # Nothing remote to ask; a manual subscription is active until changed locally
        return RemoteStatus(remote_id=remote_id, state=RemoteState.ACTIVE)

    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        raise WebhookPayloadError("Manual gateway does not accept webhooks")
