"""
Checkout Service - starts remote subscriptions and confirms them on the customer's return.

Flow:
1. create_subscription() stores a checkout intent (plan, customer, amounts) under a fresh
   session key, then asks the gateway for an approval URL carrying that key as reference.
2. The customer approves at the provider.
3. Whichever arrives first materializes the subscription: the activation webhook
   (WebhookProcessor) or the return redirect (confirm_return). Both go through
   SubscriptionService.create_from_intent, which is idempotent on the remote id.
"""
from dataclasses import dataclass, field
import logging
import secrets
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from subsync.core.config import Settings, get_settings
from subsync.core.exceptions import GatewayDisabled
from subsync.core.services.state_machine import Event
from subsync.core.services.subscription_service import SubscriptionService
from subsync.database.repositories.checkout_intent_repository import CheckoutIntent, CheckoutIntentCache
from subsync.database.session import get_session
from subsync.payments import GatewayRegistry
from subsync.payments.base import GatewayError, Plan
from subsync.utils.enums import EventKind, RemoteState
from subsync.utils.tax import calculate_tax

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    success: bool
    session_key: Optional[str] = None
    checkout_url: Optional[str] = None
    remote_subscription_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ReturnResult:
    """Outcome of the customer's return from the provider: active, pending or failed."""

    success: bool
    state: str
    message: str = ""
    subscription: Optional[Dict[str, Any]] = field(default=None)


def with_query_params(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


class CheckoutService:
    def __init__(
        self,
        service: SubscriptionService,
        gateways: GatewayRegistry,
        settings: Optional[Settings] = None,
        session_factory: Callable = get_session,
    ):
        self.service = service
        self.gateways = gateways
        self.settings = settings or get_settings()
        self.session_factory = session_factory

    def create_subscription(
        self,
        payment_method: str,
        plan: Plan,
        checkout_data: Dict[str, Any],
        customer_data: Dict[str, Any],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutResult:
        """
        Start a checkout with ``payment_method``.

        Raises:
            UnknownGateway: no adapter for payment_method
            GatewayDisabled: adapter configured but disabled
        """
        gateway = self.gateways.get(payment_method)
        if not gateway.enabled:
            raise GatewayDisabled(payment_method)

        session_key = secrets.token_urlsafe(24)
        tax_amount = calculate_tax(plan.price, customer_data, self.settings.tax_rates)
        total_amount = plan.price + tax_amount

        intent = CheckoutIntent(
            session_key=session_key,
            payment_method=payment_method,
            plan=plan.to_dict(),
            tax_amount=tax_amount,
            total_amount=total_amount,
            customer_data=dict(customer_data or {}),
            checkout_data=dict(checkout_data or {}),
        )
        with self.session_factory() as db:
            CheckoutIntentCache(db).put(intent, self.settings.checkout_ttl)

        return_url = with_query_params(success_url, session_key=session_key)
        remote = gateway.create_remote_subscription(
            plan, customer_data, return_url, cancel_url, reference=session_key, amount=total_amount
        )
        if isinstance(remote, GatewayError):
            logger.error(f"{payment_method} checkout for plan {plan.id} failed: {remote}")
            with self.session_factory() as db:
                CheckoutIntentCache(db).discard(session_key)
            return CheckoutResult(success=False, error=remote.message)

        with self.session_factory() as db:
            CheckoutIntentCache(db).attach_remote_id(session_key, remote.remote_id)

        logger.info(
            f"Checkout {session_key} started: {payment_method}:{remote.remote_id} "
            f"plan={plan.id} total={total_amount} {plan.currency}"
        )
        return CheckoutResult(
            success=True,
            session_key=session_key,
            checkout_url=remote.approval_url,
            remote_subscription_id=remote.remote_id,
        )

    def confirm_return(self, session_key: str, remote_id: Optional[str] = None) -> ReturnResult:
        """
        Customer came back from the provider's approval page.

        The webhook may already have created the subscription; in that case the existing
        record is returned. Otherwise the remote status decides: ACTIVE creates the record now,
        anything else leaves it to the activation webhook.
        """
        with self.session_factory() as db:
            intent = CheckoutIntentCache(db).take(session_key)

        if intent is None:
            existing = self._existing_by_remote_id(remote_id) if remote_id else None
            if existing is not None:
                return ReturnResult(True, "active", "Subscription already active", existing)
            return ReturnResult(False, "failed", "Checkout session not found or expired")

        remote_id = remote_id or intent.remote_subscription_id
        if not remote_id:
            return ReturnResult(False, "failed", "Checkout has no remote subscription")

        subscription_id = self.service.find_id_by_payment(intent.payment_method, remote_id)
        if subscription_id is not None:
            return ReturnResult(True, "active", "Subscription already active", self.service.get(subscription_id))

        gateway = self.gateways.get(intent.payment_method)
        status = gateway.fetch_remote_status(remote_id)
        if isinstance(status, GatewayError):
            logger.warning(f"Checkout {session_key}: could not fetch {intent.payment_method}:{remote_id}: {status}")
            return ReturnResult(False, "pending", "Could not confirm the subscription with the payment provider")

        if status.state != RemoteState.ACTIVE:
            logger.info(f"Checkout {session_key}: {intent.payment_method}:{remote_id} is {status.state}")
            return ReturnResult(True, "pending", "Subscription is awaiting provider confirmation")

        event = Event(kind=EventKind.PROVIDER_ACTIVATED, detail="checkout.return")
        snapshot, created = self.service.create_from_intent(intent, status.remote_id or remote_id, event)
        message = "Subscription activated" if created else "Subscription already active"
        return ReturnResult(True, "active", message, snapshot)

    def _existing_by_remote_id(self, remote_id: str) -> Optional[Dict[str, Any]]:
        for name in self.gateways.names():
            subscription_id = self.service.find_id_by_payment(name, remote_id)
            if subscription_id is not None:
                return self.service.get(subscription_id)
        return None
