"""
Lifecycle Service - admin and frontend actions on existing subscriptions.

Each action reads the provider's view of the subscription where the decision depends on it,
then hands a single event to SubscriptionService. Results are ActionResult values so routers
can render failures (error_cannot_cancel, error_cannot_resume, ...) without exception plumbing.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Iterable, List, Optional

from subsync.core.exceptions import ConcurrentUpdateError, IllegalTransition, SubscriptionNotFound, UnknownGateway
from subsync.core.services.state_machine import Event
from subsync.core.services.subscription_service import SubscriptionService
from subsync.payments import GatewayRegistry
from subsync.payments.base import GatewayError, RemoteStatus
from subsync.utils.enums import CancellationSource, EventKind, RemoteState, SubscriptionStatus

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    success: bool
    message: str
    code: Optional[str] = None
    subscription: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "code": self.code,
            "subscription": self.subscription,
        }


def _not_found(subscription_id: int) -> ActionResult:
    return ActionResult(False, f"Subscription {subscription_id} not found", "error_not_found")


class LifecycleService:
    def __init__(self, service: SubscriptionService, gateways: GatewayRegistry):
        self.service = service
        self.gateways = gateways

    def cancel(self, subscription_id: int) -> ActionResult:
        """Frontend cancel: access stays until the end of the paid period."""
        snapshot = self.service.get(subscription_id)
        if snapshot is None:
            return _not_found(subscription_id)

        next_billing = None
        if snapshot["status"] == SubscriptionStatus.ACTIVE:
            remote = self._remote_status(snapshot)
            if isinstance(remote, RemoteStatus):
                next_billing = remote.next_billing_time

        return self._apply(
            subscription_id,
            Event(kind=EventKind.USER_CANCEL, next_billing_date=next_billing),
            done="Subscription will be cancelled at the end of the billing period",
            unchanged="Subscription is already pending cancellation",
        )

    def force_cancel(self, subscription_id: int) -> ActionResult:
        return self._apply(
            subscription_id,
            Event(kind=EventKind.ADMIN_FORCE_CANCEL),
            done="Subscription cancelled",
            unchanged="Subscription is already cancelled",
        )

    def resume(self, subscription_id: int) -> ActionResult:
        snapshot = self.service.get(subscription_id)
        if snapshot is None:
            return _not_found(subscription_id)

        remote_state = None
        if (
            snapshot["status"] == SubscriptionStatus.PENDING_CANCELLATION
            and snapshot["cancellation_source"] == CancellationSource.FRONTEND
        ):
            remote = self._remote_status(snapshot)
            if isinstance(remote, GatewayError):
                return ActionResult(
                    False,
                    "Could not verify the subscription with the payment provider",
                    "error_cannot_resume",
                )
            # Without a remote side there is nothing to disagree with
            remote_state = remote.state if remote else RemoteState.ACTIVE

        return self._apply(
            subscription_id,
            Event(kind=EventKind.ADMIN_RESUME, remote_status=remote_state),
            done="Subscription resumed",
            unchanged="Subscription is already active",
        )

    def activate(self, subscription_id: int) -> ActionResult:
        snapshot = self.service.get(subscription_id)
        if snapshot is None:
            return _not_found(subscription_id)

        remote_state = None
        if snapshot["status"] == SubscriptionStatus.EXPIRED:
            remote = self._remote_status(snapshot)
            if isinstance(remote, RemoteStatus):
                remote_state = remote.state

        return self._apply(
            subscription_id,
            Event(kind=EventKind.ADMIN_ACTIVATE, remote_status=remote_state),
            done="Subscription activated",
            unchanged="Subscription is already active",
        )

    def delete(self, subscription_id: int) -> ActionResult:
        try:
            blocking = self.service.delete(subscription_id, SubscriptionStatus.DELETABLE)
        except SubscriptionNotFound:
            return _not_found(subscription_id)
        if blocking is not None:
            return ActionResult(
                False,
                f"Only cancelled or expired subscriptions can be deleted (status is {blocking})",
                "error_cannot_delete",
            )
        return ActionResult(True, "Subscription deleted")

    def bulk_cancel(self, subscription_ids: Iterable[int]) -> Dict[int, ActionResult]:
        """Force-cancel each id independently; one failure does not stop the rest."""
        return {sid: self.force_cancel(sid) for sid in _unique(subscription_ids)}

    def bulk_delete(self, subscription_ids: Iterable[int]) -> Dict[int, ActionResult]:
        return {sid: self.delete(sid) for sid in _unique(subscription_ids)}

    def _apply(self, subscription_id: int, event: Event, done: str, unchanged: str) -> ActionResult:
        try:
            result, snapshot = self.service.apply(subscription_id, event)
        except SubscriptionNotFound:
            return _not_found(subscription_id)
        except IllegalTransition as e:
            logger.info(f"Subscription {subscription_id}: {event.kind} rejected: {e.message}")
            return ActionResult(False, e.message, e.code)
        except ConcurrentUpdateError as e:
            logger.error(str(e))
            return ActionResult(False, "Subscription is being updated, try again", "error_conflict")
        return ActionResult(True, unchanged if result.is_noop else done, subscription=snapshot)

    def _remote_status(self, snapshot: Dict[str, Any]):
        """RemoteStatus, a GatewayError, or None when the subscription has no remote side."""
        payment_id = snapshot.get("payment_id")
        if not payment_id:
            return None
        try:
            gateway = self.gateways.get(snapshot["payment_method"])
        except UnknownGateway as e:
            logger.warning(f"Subscription {snapshot['id']}: {e}")
            return None
        remote = gateway.fetch_remote_status(payment_id)
        if isinstance(remote, GatewayError):
            logger.warning(
                f"Subscription {snapshot['id']}: could not fetch {gateway.get_name()} status: {remote}"
            )
        return remote


def _unique(ids: Iterable[int]) -> List[int]:
    seen: List[int] = []
    for sid in ids:
        if sid not in seen:
            seen.append(sid)
    return seen
