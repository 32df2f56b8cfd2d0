"""
PayPal Gateway - PayPal REST v1 (Billing Subscriptions).

Uses OAuth 2.0 client credentials; the access token is cached for its declared lifetime and
refreshed transparently on expiry or on a 401 response.

Configuration (see subsync.core.config.load_gateway_config):
- paypal.enabled / paypal.sandbox
- paypal.client_id / paypal.client_secret
- paypal.webhook_id (enables webhook signature verification)
- paypal.product_name
"""

import logging
import threading
import time
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

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
from subsync.utils.dates import parse_iso_datetime
from subsync.utils.enums import BillingFrequency, EventKind, PaymentMethod, RemoteState

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"

# billing_frequency -> (interval_unit, interval_count)
BILLING_CYCLES = {
    BillingFrequency.WEEKLY: ("WEEK", 1),
    BillingFrequency.MONTHLY: ("MONTH", 1),
    BillingFrequency.QUARTERLY: ("MONTH", 3),
    BillingFrequency.BIANNUALLY: ("MONTH", 6),
    BillingFrequency.ANNUALLY: ("YEAR", 1),
}

_UPDATED_STATUS_EVENTS = {
    "ACTIVE": EventKind.PROVIDER_STATUS_ACTIVE,
    "SUSPENDED": EventKind.PROVIDER_STATUS_SUSPENDED,
    "CANCELLED": EventKind.PROVIDER_STATUS_CANCELLED,
    "EXPIRED": EventKind.PROVIDER_STATUS_EXPIRED,
}

_SUBSCRIPTION_EVENTS = {
    "BILLING.SUBSCRIPTION.ACTIVATED": EventKind.PROVIDER_ACTIVATED,
    "BILLING.SUBSCRIPTION.CANCELLED": EventKind.PROVIDER_STATUS_CANCELLED,
    "BILLING.SUBSCRIPTION.SUSPENDED": EventKind.PROVIDER_STATUS_SUSPENDED,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": EventKind.PROVIDER_PAYMENT_FAILED,
}

# Sale events reference the subscription through billing_agreement_id
_SALE_EVENTS = {
    "PAYMENT.SALE.COMPLETED": EventKind.PROVIDER_PAYMENT_SUCCEEDED,
    "PAYMENT.SALE.REFUNDED": EventKind.PROVIDER_REFUNDED,
    "PAYMENT.SALE.DENIED": EventKind.PROVIDER_PAYMENT_FAILED,
}


def billing_cycle_for(billing_frequency: Optional[str]) -> tuple:
    return BILLING_CYCLES.get((billing_frequency or "").lower(), BILLING_CYCLES[BillingFrequency.MONTHLY])


def normalize_remote_state(status: Optional[str]) -> str:
    value = (status or "").strip().upper()
    known = (
        RemoteState.APPROVAL_PENDING,
        RemoteState.ACTIVE,
        RemoteState.SUSPENDED,
        RemoteState.CANCELLED,
        RemoteState.EXPIRED,
    )
    if value == "APPROVED":
        return RemoteState.APPROVAL_PENDING
    return value if value in known else RemoteState.UNKNOWN


def translate_paypal_event(payload: Dict[str, Any]) -> GatewayEvent:
    """Map a PayPal webhook envelope onto a GatewayEvent."""
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")
    event_type = payload.get("event_type") or ""
    if not event_type:
        raise WebhookPayloadError("Missing event type in webhook data")
    resource = payload.get("resource")
    if not resource or not isinstance(resource, dict):
        raise WebhookPayloadError("Missing resource data in webhook event")

    event = GatewayEvent(
        event_type=event_type,
        kind=None,
        event_id=payload.get("id"),
        payload=payload,
    )

    if event_type in _SALE_EVENTS:
        event.remote_id = resource.get("billing_agreement_id")
        # One-off sales have no agreement and are not ours to track
        event.kind = _SALE_EVENTS[event_type] if event.remote_id else None
        return event

    if not event_type.startswith("BILLING.SUBSCRIPTION."):
        return event

    event.remote_id = resource.get("id")
    event.reference = resource.get("custom_id")
    event.remote_status = normalize_remote_state(resource.get("status")) if resource.get("status") else None
    billing_info = resource.get("billing_info") or {}
    event.next_billing_time = parse_iso_datetime(billing_info.get("next_billing_time"))

    if event_type == "BILLING.SUBSCRIPTION.UPDATED":
        event.kind = _UPDATED_STATUS_EVENTS.get((resource.get("status") or "").upper())
    else:
        # BILLING.SUBSCRIPTION.CREATED is informational only
        event.kind = _SUBSCRIPTION_EVENTS.get(event_type)
    return event


class PayPalGateway(GatewayAdapter):
    """PayPal subscriptions via the REST API."""

    def __init__(self, config):
        super().__init__(config)
        self.base_url = SANDBOX_URL if config.sandbox else LIVE_URL
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = threading.Lock()

    def get_name(self) -> str:
        return PaymentMethod.PAYPAL

    # ── Auth ──

    def get_access_token(self) -> Union[str, GatewayError]:
        """Cached OAuth token; refreshed 60s before its declared expiry."""
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            try:
                response = requests.request(
                    "POST",
                    f"{self.base_url}/v1/oauth2/token",
                    auth=(self.config.client_id, self.config.client_secret),
                    headers={"Accept": "application/json", "Accept-Language": "en_US"},
                    data={"grant_type": "client_credentials"},
                    timeout=self.config.timeout,
                )
            except requests.RequestException as e:
                logger.warning(f"PayPal token request failed: {e}")
                return GatewayError(f"PayPal token request failed: {e}", retryable=True)

            if response.status_code != 200:
                logger.warning(f"PayPal token error: {response.status_code} {response.text[:200]}")
                return GatewayError(
                    "Failed to obtain PayPal access token",
                    status_code=response.status_code,
                    retryable=response.status_code >= 500,
                )

            data = response.json()
            token = data.get("access_token")
            if not token:
                return GatewayError("PayPal token response had no access_token")
            expires_in = int(data.get("expires_in") or 3600)
            self._token = token
            self._token_expires_at = time.monotonic() + max(expires_in - 60, 0)
            return token

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None
            self._token_expires_at = 0.0

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        expected: tuple = (200, 201, 204),
        retry_on_401: bool = True,
    ) -> Union[requests.Response, GatewayError]:
        token = self.get_access_token()
        if isinstance(token, GatewayError):
            return token
        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                json=json,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"PayPal {method} {path} failed: {e}")
            return GatewayError(f"PayPal request failed: {e}", retryable=True)

        if response.status_code == 401 and retry_on_401:
            self.invalidate_token()
            return self._request(method, path, json=json, expected=expected, retry_on_401=False)

        if response.status_code not in expected:
            logger.warning(f"PayPal {method} {path} -> {response.status_code}: {response.text[:300]}")
            return GatewayError(
                f"PayPal API error on {method} {path}",
                status_code=response.status_code,
                retryable=response.status_code >= 500 or response.status_code == 429,
                details=response.text[:1000],
            )
        return response

    # ── Subscriptions ──

    def create_remote_subscription(
        self,
        plan: Plan,
        customer: Dict[str, Any],
        success_url: str,
        cancel_url: str,
        reference: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> Union[RemoteSubscription, GatewayError]:
        """Create product, plan and subscription; returns the buyer approval link."""
        product = self._request("POST", "/v1/catalogs/products", json={
            "name": self.config.product_name or plan.name,
            "description": plan.name,
            "type": "SERVICE",
            "category": "SOFTWARE",
        })
        if isinstance(product, GatewayError):
            return product

        interval_unit, interval_count = billing_cycle_for(plan.billing_frequency)
        price = amount if amount is not None else plan.price
        billing_plan = self._request("POST", "/v1/billing/plans", json={
            "product_id": product.json()["id"],
            "name": plan.name,
            "status": "ACTIVE",
            "billing_cycles": [{
                "frequency": {"interval_unit": interval_unit, "interval_count": interval_count},
                "tenure_type": "REGULAR",
                "sequence": 1,
                "total_cycles": 0,
                "pricing_scheme": {
                    "fixed_price": {"value": f"{Decimal(price):.2f}", "currency_code": plan.currency},
                },
            }],
            "payment_preferences": {
                "auto_bill_outstanding": True,
                "setup_fee_failure_action": "CONTINUE",
                "payment_failure_threshold": 3,
            },
        })
        if isinstance(billing_plan, GatewayError):
            return billing_plan

        body: Dict[str, Any] = {
            "plan_id": billing_plan.json()["id"],
            "application_context": {
                "user_action": "SUBSCRIBE_NOW",
                "shipping_preference": "NO_SHIPPING",
                "return_url": success_url,
                "cancel_url": cancel_url,
            },
        }
        if reference:
            body["custom_id"] = reference
        subscriber = _subscriber_from_customer(customer)
        if subscriber:
            body["subscriber"] = subscriber

        response = self._request("POST", "/v1/billing/subscriptions", json=body)
        if isinstance(response, GatewayError):
            return response

        data = response.json()
        approval_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        if not approval_url:
            return GatewayError("PayPal subscription response had no approval link", details=data)
        logger.info(f"PayPal subscription {data.get('id')} created (reference={reference})")
        return RemoteSubscription(remote_id=data["id"], approval_url=approval_url)

    def _action(self, remote_id: str, action: str, reason: str) -> RemoteResult:
        response = self._request(
            "POST",
            f"/v1/billing/subscriptions/{remote_id}/{action}",
            json={"reason": reason},
            expected=(200, 204),
        )
        if isinstance(response, GatewayError):
            # 422 means the subscription is already in the requested state
            if response.status_code == 422:
                logger.info(f"PayPal {action} on {remote_id}: already applied")
                return True
            return response
        return True

    def cancel_remote(self, remote_id: str) -> RemoteResult:
        return self._action(remote_id, "cancel", "Subscription cancelled")

    def suspend_remote(self, remote_id: str) -> RemoteResult:
        return self._action(remote_id, "suspend", "Subscription suspended")

    def reactivate_remote(self, remote_id: str) -> RemoteResult:
        return self._action(remote_id, "activate", "Subscription reactivated")

    def fetch_remote_status(self, remote_id: str) -> Union[RemoteStatus, GatewayError]:
        response = self._request("GET", f"/v1/billing/subscriptions/{remote_id}", expected=(200,))
        if isinstance(response, GatewayError):
            return response
        data = response.json()
        billing_info = data.get("billing_info") or {}
        return RemoteStatus(
            remote_id=data.get("id") or remote_id,
            state=normalize_remote_state(data.get("status")),
            next_billing_time=parse_iso_datetime(billing_info.get("next_billing_time")),
            raw=data,
        )

    # ── Webhooks ──

    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        return translate_paypal_event(payload)

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str], payload: Dict[str, Any]) -> bool:
        """Verify via PayPal's verify-webhook-signature API when a webhook id is configured."""
        if not self.config.webhook_id:
            return True
        lowered = {k.lower(): v for k, v in headers.items()}
        response = self._request("POST", "/v1/notifications/verify-webhook-signature", json={
            "auth_algo": lowered.get("paypal-auth-algo"),
            "cert_url": lowered.get("paypal-cert-url"),
            "transmission_id": lowered.get("paypal-transmission-id"),
            "transmission_sig": lowered.get("paypal-transmission-sig"),
            "transmission_time": lowered.get("paypal-transmission-time"),
            "webhook_id": self.config.webhook_id,
            "webhook_event": payload,
        }, expected=(200,))
        if isinstance(response, GatewayError):
            logger.warning(f"PayPal webhook verification call failed: {response}")
            return False
        return response.json().get("verification_status") == "SUCCESS"


def _subscriber_from_customer(customer: Dict[str, Any]) -> Dict[str, Any]:
    subscriber: Dict[str, Any] = {}
    first = customer.get("first_name")
    last = customer.get("last_name")
    if first or last:
        subscriber["name"] = {"given_name": first or "", "surname": last or ""}
    if customer.get("email"):
        subscriber["email_address"] = customer["email"]
    return subscriber
