"""
Subscription Service - the only code path that mutates a subscription's status.

Every change runs as one serialized cycle per subscription:

    lock(subscription) -> load -> state_machine.transition -> persist -> unlock
    then, outside the lock: provisioning notifications, gateway calls and status listeners

Serialization is in-process (KeyedLock) plus optimistic versioning on the row
(``subscriptions.version``), so two hosts racing on one row retry instead of losing an update.
Side effects run after commit and never roll back the local transition.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from subsync.core.exceptions import ConcurrentUpdateError, SubscriptionNotFound, UnknownGateway
from subsync.core.locks import KeyedLock, get_subscription_locks
from subsync.core.services import state_machine
from subsync.core.services.provisioning import ProvisioningNotifier
from subsync.core.services.retry_policy import RetryPolicy
from subsync.core.services.status_listener import StatusListener, get_status_listener
from subsync.core.services.state_machine import Effect, Event, Transition
from subsync.database.repositories.checkout_intent_repository import CheckoutIntent, CheckoutIntentCache
from subsync.database.repositories.subscription_repository import SubscriptionRepository
from subsync.database.session import get_session
from subsync.payments import GatewayRegistry
from subsync.payments.base import GatewayError, Plan
from subsync.utils.dates import calculate_end_date
from subsync.utils.enums import CancellationSource, EventKind, PaymentStatus, ProvisioningAction, SubscriptionStatus

logger = logging.getLogger(__name__)

_REMOTE_CALLS = {
    Effect.CANCEL_REMOTE: "cancel_remote",
    Effect.REACTIVATE_REMOTE: "reactivate_remote",
    Effect.SCHEDULE_REMOTE_CANCEL: "schedule_cancel_remote",
    Effect.RESUME_REMOTE: "resume_remote",
}


class SubscriptionService:
    """Applies events to subscriptions and runs the resulting side effects."""

    def __init__(
        self,
        gateways: GatewayRegistry,
        notifier: ProvisioningNotifier,
        policy: Optional[RetryPolicy] = None,
        session_factory: Callable = get_session,
        locks: Optional[KeyedLock] = None,
        max_attempts: int = 3,
        status_listener: Optional[StatusListener] = None,
    ):
        self.gateways = gateways
        self.notifier = notifier
        self.policy = policy or RetryPolicy()
        self.session_factory = session_factory
        self.locks = locks or get_subscription_locks()
        self.max_attempts = max_attempts
        self.status_listener = status_listener or get_status_listener()

    # ── Reads ──

    def get(self, subscription_id: int) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            subscription = SubscriptionRepository(db).get_by_id(subscription_id)
            return subscription.snapshot() if subscription else None

    def find_id_by_payment(self, payment_method: str, payment_id: str) -> Optional[int]:
        with self.session_factory() as db:
            subscription = SubscriptionRepository(db).get_by_payment_id(payment_method, payment_id)
            return subscription.id if subscription else None

    # ── Writes ──

    def apply(self, subscription_id: int, event: Event) -> Tuple[Transition, Dict[str, Any]]:
        """
        Apply one event to one subscription.

        Returns:
            (transition, snapshot after the transition)

        Raises:
            SubscriptionNotFound: no such subscription
            IllegalTransition: precondition of a lifecycle action failed (nothing persisted)
            ConcurrentUpdateError: optimistic retries exhausted
        """
        with self.locks.hold(subscription_id):
            result, snapshot = self._apply_with_retry(subscription_id, event)

        if result.is_noop:
            logger.info(f"Subscription {subscription_id}: {event.kind} is a no-op (status={result.from_status})")
        else:
            logger.info(
                f"Subscription {subscription_id}: {event.kind} {result.from_status} -> {result.to_status} "
                f"changes={sorted(result.changes)} effects={list(result.effects)}"
            )
        self.run_effects(snapshot, result)
        return result, snapshot

    def _apply_with_retry(self, subscription_id: int, event: Event) -> Tuple[Transition, Dict[str, Any]]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.session_factory() as db:
                    repo = SubscriptionRepository(db)
                    subscription = repo.get_by_id(subscription_id)
                    if subscription is None:
                        raise SubscriptionNotFound(subscription_id)
                    result = state_machine.transition(subscription, event, self.policy)
                    if result.changes:
                        repo.apply_changes(subscription, result.changes)
                    snapshot = subscription.snapshot()
                return result, snapshot
            except StaleDataError:
                logger.warning(
                    f"Subscription {subscription_id}: concurrent update on {event.kind}, "
                    f"retrying ({attempt}/{self.max_attempts})"
                )
        raise ConcurrentUpdateError(
            f"Subscription {subscription_id}: gave up on {event.kind} after {self.max_attempts} attempts"
        )

    def apply_by_payment(
        self, payment_method: str, payment_id: str, event: Event
    ) -> Optional[Tuple[Transition, Dict[str, Any]]]:
        """Webhook path: resolve (payment_method, payment_id) then apply. None if unknown."""
        subscription_id = self.find_id_by_payment(payment_method, payment_id)
        if subscription_id is None:
            return None
        try:
            return self.apply(subscription_id, event)
        except SubscriptionNotFound:
            # Deleted between lookup and lock
            return None

    def create_from_intent(
        self, intent: CheckoutIntent, remote_id: str, event: Optional[Event] = None
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Materialize the subscription for a confirmed checkout.

        Idempotent on (payment_method, remote_id): a second call returns the existing record.
        The intent is discarded once the record is durably created.

        Returns:
            (snapshot, created)
        """
        event = event or Event(kind=EventKind.PROVIDER_ACTIVATED)
        method = intent.payment_method

        with self.locks.hold(("payment", method, remote_id)):
            try:
                with self.session_factory() as db:
                    repo = SubscriptionRepository(db)
                    existing = repo.get_by_payment_id(method, remote_id)
                    if existing is not None:
                        CheckoutIntentCache(db).discard(intent.session_key)
                        return existing.snapshot(), False

                    result = state_machine.transition(None, event, self.policy)
                    subscription = repo.create(**self._fields_from_intent(intent, remote_id, event))
                    CheckoutIntentCache(db).discard(intent.session_key)
                    snapshot = subscription.snapshot()
            except IntegrityError:
                # Another host committed the same remote id first
                logger.info(f"Subscription for {method}:{remote_id} created concurrently, reusing it")
                with self.session_factory() as db:
                    existing = SubscriptionRepository(db).get_by_payment_id(method, remote_id)
                    if existing is None:
                        raise
                    return existing.snapshot(), False

        logger.info(
            f"Subscription {snapshot['id']} created for {method}:{remote_id} "
            f"(plan={snapshot['plan_id']}, user={snapshot['user_id']})"
        )
        self.run_effects(snapshot, result)
        return snapshot, True

    @staticmethod
    def _fields_from_intent(intent: CheckoutIntent, remote_id: str, event: Event) -> Dict[str, Any]:
        plan = Plan.from_dict(intent.plan)
        now = event.occurred_at
        return {
            "user_id": intent.checkout_data.get("user_id"),
            "application_id": intent.checkout_data.get("application_id"),
            "plan_id": plan.id,
            "external_plan_id": plan.external_plan_id,
            "payment_method": intent.payment_method,
            "payment_id": remote_id,
            "status": SubscriptionStatus.ACTIVE,
            "cancellation_source": CancellationSource.NONE,
            "payment_status": PaymentStatus.PAID,
            "retry_count": 0,
            "start_date": now,
            "end_date": calculate_end_date(plan.billing_frequency, now),
            "last_payment_date": now,
            "recent_event_ids": [event.event_id] if event.event_id else [],
            "amount": plan.price,
            "tax_amount": intent.tax_amount,
            "total_amount": intent.total_amount,
            "currency": plan.currency,
            "billing_frequency": plan.billing_frequency,
            "customer_data": intent.customer_data,
        }

    def delete(self, subscription_id: int, allowed_statuses: Tuple[str, ...]) -> Optional[str]:
        """
        Delete under the subscription lock when its status is allowed.

        Returns:
            None when deleted, otherwise the status that blocked the delete

        Raises:
            SubscriptionNotFound
        """
        with self.locks.hold(subscription_id):
            with self.session_factory() as db:
                repo = SubscriptionRepository(db)
                subscription = repo.get_by_id(subscription_id)
                if subscription is None:
                    raise SubscriptionNotFound(subscription_id)
                if subscription.status not in allowed_statuses:
                    return subscription.status
                repo.delete(subscription_id)
        logger.info(f"Subscription {subscription_id} deleted")
        return None

    # ── Side effects ──

    def run_effects(self, snapshot: Dict[str, Any], result: Transition) -> List[GatewayError]:
        """Run notifications and gateway calls; returns the gateway failures."""
        failures: List[GatewayError] = []
        for effect in result.effects:
            if effect == Effect.ACTIVATE_PROVISIONING:
                self._notify(ProvisioningAction.ACTIVATE, snapshot)
            elif effect == Effect.DEACTIVATE_PROVISIONING:
                self._notify(ProvisioningAction.DEACTIVATE, snapshot)
            elif effect in _REMOTE_CALLS:
                error = self._call_remote(_REMOTE_CALLS[effect], snapshot)
                if error is not None:
                    failures.append(error)
        if result.status_changed and result.to_status is not None:
            self._notify_status(result.from_status, result.to_status, snapshot)
        return failures

    def _notify(self, action: str, snapshot: Dict[str, Any]) -> None:
        try:
            accepted = self.notifier.notify(action, snapshot)
        except Exception:
            logger.exception(f"Provisioning {action} raised for subscription {snapshot.get('id')}")
            return
        if not accepted:
            logger.warning(f"Provisioning {action} not accepted for subscription {snapshot.get('id')}")

    def _notify_status(self, old_status: Optional[str], new_status: str, snapshot: Dict[str, Any]) -> None:
        try:
            self.status_listener.status_changed(old_status, new_status, snapshot)
        except Exception:
            logger.exception(
                f"Status listener {self.status_listener.get_name()} raised for subscription {snapshot.get('id')}"
            )

    def _call_remote(self, operation: str, snapshot: Dict[str, Any]) -> Optional[GatewayError]:
        payment_id = snapshot.get("payment_id")
        if not payment_id:
            return None
        try:
            gateway = self.gateways.get(snapshot["payment_method"])
        except UnknownGateway as e:
            logger.warning(f"Subscription {snapshot.get('id')}: {e}; skipping {operation}")
            return None

        result = getattr(gateway, operation)(payment_id)
        if isinstance(result, GatewayError):
            logger.error(
                f"Subscription {snapshot.get('id')}: {gateway.get_name()} {operation}({payment_id}) failed: {result}"
            )
            return result
        logger.info(f"Subscription {snapshot.get('id')}: {gateway.get_name()} {operation}({payment_id}) ok")
        return None


def default_subscription_service() -> SubscriptionService:
    """Service wired to the process-wide settings, gateways and notifier."""
    from subsync.core.config import get_settings
    from subsync.core.services.provisioning import get_notifier
    from subsync.payments import get_gateway_registry

    return SubscriptionService(
        gateways=get_gateway_registry(),
        notifier=get_notifier(),
        policy=RetryPolicy.from_settings(get_settings()),
    )
