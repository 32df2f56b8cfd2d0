"""
Stripe Gateway - Stripe REST API over requests (form-encoded, secret key as basic auth).

Checkout runs through a Checkout Session in subscription mode; the session key travels as
``client_reference_id`` and comes back on ``checkout.session.completed``. Webhooks are signed
with the ``Stripe-Signature`` header (``t=<ts>,v1=<hmac-sha256>``).

Configuration:
- stripe.enabled
- stripe.client_secret (secret API key)
- stripe.webhook_secret (endpoint signing secret)
"""

import hashlib
import hmac
import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import requests

from subsync.core.exceptions import WebhookPayloadError
from subsync.payments.base import (
    GatewayAdapter,
    GatewayError,
    GatewayEvent,
    Plan,
    RemoteResult,
    RemoteStatus,
    RemoteSubscription,
)
from subsync.utils.dates import from_epoch
from subsync.utils.enums import BillingFrequency, EventKind, PaymentMethod, RemoteState

logger = logging.getLogger(__name__)

API_URL = "https://api.stripe.com"
SIGNATURE_TOLERANCE_SECONDS = 300

# billing_frequency -> (interval, interval_count)
RECURRING = {
    BillingFrequency.WEEKLY: ("week", 1),
    BillingFrequency.MONTHLY: ("month", 1),
    BillingFrequency.QUARTERLY: ("month", 3),
    BillingFrequency.BIANNUALLY: ("month", 6),
    BillingFrequency.ANNUALLY: ("year", 1),
}

_STATUS_MAP = {
    "active": RemoteState.ACTIVE,
    "trialing": RemoteState.ACTIVE,
    "past_due": RemoteState.ACTIVE,
    "unpaid": RemoteState.SUSPENDED,
    "paused": RemoteState.SUSPENDED,
    "canceled": RemoteState.CANCELLED,
    "incomplete": RemoteState.APPROVAL_PENDING,
    "incomplete_expired": RemoteState.EXPIRED,
}

_STATUS_EVENTS = {
    RemoteState.ACTIVE: EventKind.PROVIDER_STATUS_ACTIVE,
    RemoteState.SUSPENDED: EventKind.PROVIDER_STATUS_SUSPENDED,
    RemoteState.CANCELLED: EventKind.PROVIDER_STATUS_CANCELLED,
    RemoteState.EXPIRED: EventKind.PROVIDER_STATUS_EXPIRED,
}


def normalize_remote_state(status: Optional[str]) -> str:
    return _STATUS_MAP.get((status or "").lower(), RemoteState.UNKNOWN)


def parse_signature_header(header: Optional[str]) -> Tuple[int, List[str]]:
    if not header:
        return 0, []
    timestamp = 0
    signatures: List[str] = []
    for part in header.split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip().lower()
        if key == "t":
            try:
                timestamp = int(value.strip())
            except ValueError:
                timestamp = 0
        elif key == "v1":
            signatures.append(value.strip())
    return timestamp, signatures


def verify_signature(
    raw_body: bytes,
    header: Optional[str],
    secret: str,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> bool:
    timestamp, signatures = parse_signature_header(header)
    if timestamp <= 0 or not signatures:
        return False
    now = int(time.time()) if now is None else now
    if abs(now - timestamp) > tolerance:
        return False
    signed = f"{timestamp}.".encode("utf-8") + raw_body
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, s) for s in signatures)


def translate_stripe_event(payload: Dict[str, Any]) -> GatewayEvent:
    """Map a Stripe event envelope onto a GatewayEvent."""
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")
    event_type = payload.get("type") or ""
    if not event_type:
        raise WebhookPayloadError("Missing event type in webhook data")
    obj = (payload.get("data") or {}).get("object")
    if not obj or not isinstance(obj, dict):
        raise WebhookPayloadError("Missing data.object in webhook event")

    event = GatewayEvent(event_type=event_type, kind=None, event_id=payload.get("id"), payload=payload)

    if event_type == "checkout.session.completed":
        if obj.get("mode") == "subscription" and obj.get("subscription"):
            event.kind = EventKind.PROVIDER_ACTIVATED
            event.remote_id = obj["subscription"]
            event.reference = obj.get("client_reference_id")
        return event

    if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
        event.remote_id = obj.get("id")
        event.remote_status = normalize_remote_state(obj.get("status"))
        event.next_billing_time = from_epoch(obj.get("current_period_end"))
        if event_type == "customer.subscription.deleted":
            event.kind = EventKind.PROVIDER_STATUS_CANCELLED
            event.next_billing_time = from_epoch(obj.get("ended_at")) or event.next_billing_time
        elif obj.get("cancel_at_period_end"):
            # Renewal switched off; the period still runs, nothing to mirror until it ends
            event.kind = None
        else:
            event.kind = _STATUS_EVENTS.get(event.remote_status)
        return event

    if event_type in ("invoice.paid", "invoice.payment_failed"):
        event.remote_id = obj.get("subscription")
        if event.remote_id:
            event.kind = (
                EventKind.PROVIDER_PAYMENT_SUCCEEDED if event_type == "invoice.paid"
                else EventKind.PROVIDER_PAYMENT_FAILED
            )
        return event

    return event


class StripeGateway(GatewayAdapter):
    """Stripe subscriptions via the REST API."""

    def get_name(self) -> str:
        return PaymentMethod.STRIPE

    def get_access_token(self) -> Optional[str]:
        return self.config.client_secret or None

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Union[Dict[str, Any], GatewayError]:
        try:
            response = requests.request(
                method,
                f"{API_URL}{path}",
                auth=(self.config.client_secret, ""),
                data=data,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Stripe {method} {path} failed: {e}")
            return GatewayError(f"Stripe request failed: {e}", retryable=True)

        if response.status_code >= 400:
            logger.warning(f"Stripe {method} {path} -> {response.status_code}: {response.text[:300]}")
            return GatewayError(
                f"Stripe API error on {method} {path}",
                status_code=response.status_code,
                retryable=response.status_code >= 500 or response.status_code == 429,
                details=response.text[:1000],
            )
        return response.json()

    def create_remote_subscription(
        self,
        plan: Plan,
        customer: Dict[str, Any],
        success_url: str,
        cancel_url: str,
        reference: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> Union[RemoteSubscription, GatewayError]:
        interval, interval_count = RECURRING.get(
            (plan.billing_frequency or "").lower(), RECURRING[BillingFrequency.MONTHLY]
        )
        price = Decimal(amount if amount is not None else plan.price)
        data = {
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items[0][quantity]": 1,
            "line_items[0][price_data][currency]": plan.currency.lower(),
            "line_items[0][price_data][unit_amount]": int((price * 100).quantize(Decimal("1"))),
            "line_items[0][price_data][recurring][interval]": interval,
            "line_items[0][price_data][recurring][interval_count]": interval_count,
            "line_items[0][price_data][product_data][name]": plan.name,
        }
        if reference:
            data["client_reference_id"] = reference
        if customer.get("email"):
            data["customer_email"] = customer["email"]

        session = self._request("POST", "/v1/checkout/sessions", data=data)
        if isinstance(session, GatewayError):
            return session
        if not session.get("url"):
            return GatewayError("Stripe checkout session had no url", details=session)
        return RemoteSubscription(remote_id=session["id"], approval_url=session["url"])

    def cancel_remote(self, remote_id: str) -> RemoteResult:
        result = self._request("DELETE", f"/v1/subscriptions/{remote_id}")
        if isinstance(result, GatewayError):
            return result
        return True

    def suspend_remote(self, remote_id: str) -> RemoteResult:
        result = self._request("POST", f"/v1/subscriptions/{remote_id}", data={
            "pause_collection[behavior]": "void",
        })
        return result if isinstance(result, GatewayError) else True

    def reactivate_remote(self, remote_id: str) -> RemoteResult:
        result = self._request("POST", f"/v1/subscriptions/{remote_id}", data={"pause_collection": ""})
        return result if isinstance(result, GatewayError) else True

    def schedule_cancel_remote(self, remote_id: str) -> RemoteResult:
        result = self._request("POST", f"/v1/subscriptions/{remote_id}", data={"cancel_at_period_end": "true"})
        return result if isinstance(result, GatewayError) else True

    def resume_remote(self, remote_id: str) -> RemoteResult:
        result = self._request("POST", f"/v1/subscriptions/{remote_id}", data={"cancel_at_period_end": "false"})
        return result if isinstance(result, GatewayError) else True

    def fetch_remote_status(self, remote_id: str) -> Union[RemoteStatus, GatewayError]:
        """Accepts a subscription id or a checkout session id (``cs_...``)."""
        if remote_id.startswith("cs_"):
            session = self._request("GET", f"/v1/checkout/sessions/{remote_id}")
            if isinstance(session, GatewayError):
                return session
            if not session.get("subscription"):
                return RemoteStatus(remote_id=remote_id, state=RemoteState.APPROVAL_PENDING, raw=session)
            remote_id = session["subscription"]

        data = self._request("GET", f"/v1/subscriptions/{remote_id}")
        if isinstance(data, GatewayError):
            return data
        return RemoteStatus(
            remote_id=data.get("id") or remote_id,
            state=normalize_remote_state(data.get("status")),
            next_billing_time=from_epoch(data.get("current_period_end")),
            raw=data,
        )

    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        return translate_stripe_event(payload)

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str], payload: Dict[str, Any]) -> bool:
        if not self.config.webhook_secret:
            return True
        lowered = {k.lower(): v for k, v in headers.items()}
        return verify_signature(raw_body, lowered.get("stripe-signature"), self.config.webhook_secret)
