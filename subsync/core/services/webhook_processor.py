"""
Webhook Event Processor - provider callbacks in, state-machine events out.

Response contract (providers redeliver anything that is not 2xx):
- 200 {"success": true}: processed, a no-op, an ignored event type, or an unknown subscription
- 400 {"error": msg}: unparsable body, missing fields, bad signature, or an internal failure
- 403 {"error": msg}: gateway administratively disabled

Idempotency comes from the state machine: repeated events are no-ops, and creation is guarded
by the (payment_method, payment_id) uniqueness check.
"""
from dataclasses import dataclass, field
import json
import logging
from typing import Any, Callable, Dict, Mapping

from subsync.core.exceptions import UnknownGateway, WebhookPayloadError
from subsync.core.services.state_machine import Event
from subsync.core.services.subscription_service import SubscriptionService
from subsync.database.repositories.checkout_intent_repository import CheckoutIntentCache
from subsync.database.session import get_session
from subsync.payments import GatewayRegistry
from subsync.payments.base import GatewayEvent
from subsync.utils.dates import utcnow
from subsync.utils.enums import EventKind

logger = logging.getLogger(__name__)


@dataclass
class WebhookResponse:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls) -> "WebhookResponse":
        return cls(200, {"success": True})

    @classmethod
    def error(cls, status_code: int, message: str) -> "WebhookResponse":
        return cls(status_code, {"error": message})


class WebhookProcessor:
    def __init__(
        self,
        service: SubscriptionService,
        gateways: GatewayRegistry,
        session_factory: Callable = get_session,
    ):
        self.service = service
        self.gateways = gateways
        self.session_factory = session_factory

    def handle(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        try:
            gateway = self.gateways.get(provider)
        except UnknownGateway as e:
            logger.warning(f"Webhook for unknown gateway: {provider}")
            return WebhookResponse.error(404, str(e))

        if not gateway.enabled:
            logger.warning(f"Webhook rejected: {provider} gateway not enabled")
            return WebhookResponse.error(403, f"{provider} gateway not enabled")

        try:
            payload = json.loads(raw_body or b"")
        except ValueError as e:
            logger.warning(f"{provider} webhook with invalid JSON: {e}")
            return WebhookResponse.error(400, "Invalid JSON payload")

        if not gateway.verify_webhook(raw_body, headers, payload):
            logger.warning(f"{provider} webhook signature verification failed")
            return WebhookResponse.error(400, "Invalid webhook signature")

        try:
            event = gateway.parse_event(payload)
        except WebhookPayloadError as e:
            logger.warning(f"{provider} webhook rejected: {e}")
            return WebhookResponse.error(400, str(e))

        logger.info(
            f"{provider} webhook {event.event_type} (id={event.event_id}, remote={event.remote_id})"
        )

        try:
            self._dispatch(gateway.get_name(), event)
        except Exception:
            # Internals stay in the log; the provider just redelivers
            logger.exception(f"{provider} webhook {event.event_type} failed (remote={event.remote_id})")
            return WebhookResponse.error(400, "Webhook processing failed")
        return WebhookResponse.ok()

    def _dispatch(self, payment_method: str, event: GatewayEvent) -> None:
        if event.kind is None:
            logger.info(f"{payment_method} event {event.event_type} acknowledged without action")
            return
        if not event.remote_id:
            logger.warning(f"{payment_method} event {event.event_type} has no subscription id, ignoring")
            return

        domain_event = Event(
            kind=event.kind,
            occurred_at=utcnow(),
            event_id=event.event_id,
            remote_status=event.remote_status,
            next_billing_date=event.next_billing_time,
            detail=event.event_type,
        )

        applied = self.service.apply_by_payment(payment_method, event.remote_id, domain_event)
        if applied is not None:
            if event.kind == EventKind.PROVIDER_ACTIVATED and event.reference:
                with self.session_factory() as db:
                    CheckoutIntentCache(db).discard(event.reference)
            return

        if event.kind == EventKind.PROVIDER_ACTIVATED:
            self._create_from_checkout(payment_method, event, domain_event)
            return

        logger.warning(
            f"Unknown subscription {payment_method}:{event.remote_id} for {event.event_type}, acknowledging"
        )

    def _create_from_checkout(self, payment_method: str, event: GatewayEvent, domain_event: Event) -> None:
        if not event.reference:
            logger.warning(f"Activation for {payment_method}:{event.remote_id} carries no checkout reference")
            return

        with self.session_factory() as db:
            intent = CheckoutIntentCache(db).take(event.reference)
        if intent is None:
            logger.warning(
                f"No pending checkout {event.reference} for {payment_method}:{event.remote_id} "
                "(expired or already consumed)"
            )
            return
        if intent.payment_method != payment_method:
            logger.warning(
                f"Checkout {event.reference} belongs to {intent.payment_method}, not {payment_method}"
            )
            return

        snapshot, created = self.service.create_from_intent(intent, event.remote_id, domain_event)
        if not created:
            logger.info(f"Subscription {snapshot['id']} already existed for {payment_method}:{event.remote_id}")
