"""
Subscription State Machine

Pure transition logic. Given the persisted subscription (or None when nothing exists yet) and an
incoming event, compute the next status, the field changes to persist, and the side effects the
caller must run after committing. Nothing here touches the database or the network.

States: active, pending-cancellation, cancelled, expired.

Rules:
- Transitions are computed from the persisted row and the event payload only; webhooks may
  arrive out of order, so no prior state is ever assumed.
- Moving to the current status is a legal no-op, never an error. A no-op has no changes and
  no effects.
- Provider-initiated pending cancellations are not locally reversible.
- Lifecycle actions whose precondition fails raise IllegalTransition; provider and sweep
  events never raise, they degrade to no-ops.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from subsync.core.exceptions import IllegalTransition
from subsync.core.services import retry_policy
from subsync.core.services.retry_policy import RetryPolicy
from subsync.utils.dates import calculate_end_date, utcnow
from subsync.utils.enums import (
    CancellationSource,
    EventKind,
    PaymentStatus,
    RemoteState,
    SubscriptionStatus,
)

ACTIVE = SubscriptionStatus.ACTIVE
PENDING = SubscriptionStatus.PENDING_CANCELLATION
CANCELLED = SubscriptionStatus.CANCELLED
EXPIRED = SubscriptionStatus.EXPIRED

# Provider event ids remembered per subscription for redelivery detection
RECENT_EVENT_IDS = 50


class Effect:
    CREATE_RECORD = "create_record"
    ACTIVATE_PROVISIONING = "activate_provisioning"
    DEACTIVATE_PROVISIONING = "deactivate_provisioning"
    CANCEL_REMOTE = "cancel_remote"
    REACTIVATE_REMOTE = "reactivate_remote"
    SCHEDULE_REMOTE_CANCEL = "schedule_remote_cancel"
    RESUME_REMOTE = "resume_remote"


@dataclass(frozen=True)
class Event:
    kind: str
    occurred_at: datetime = field(default_factory=utcnow)
    event_id: Optional[str] = None
    remote_status: Optional[str] = None
    next_billing_date: Optional[datetime] = None
    detail: Optional[str] = None


@dataclass
class Transition:
    event: str
    from_status: Optional[str]
    to_status: Optional[str]
    changes: Dict[str, Any] = field(default_factory=dict)
    effects: Tuple[str, ...] = ()

    @property
    def is_noop(self) -> bool:
        return not self.changes and not self.effects

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status


def _noop(current, event: Event) -> Transition:
    return Transition(event.kind, current.status, current.status)


def _build(current, event: Event, effects: Tuple[str, ...] = (), **fields) -> Transition:
    """Keep only fields that differ from the persisted row."""
    to_status = fields.get("status", current.status)
    if to_status == CANCELLED and current.status != CANCELLED:
        fields.setdefault("cancelled_at", event.occurred_at)
    changes = {k: v for k, v in fields.items() if getattr(current, k) != v}
    if not changes:
        return _noop(current, event)
    return Transition(event.kind, current.status, to_status, changes=changes, effects=effects)


def _cancel_effects(current) -> Tuple[str, ...]:
    if retry_policy.needs_remote_cancel(current):
        return (Effect.DEACTIVATE_PROVISIONING, Effect.CANCEL_REMOTE)
    return (Effect.DEACTIVATE_PROVISIONING,)


# ── Provider events ──

def _on_activated(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status == ACTIVE:
        return _noop(current, event)
    return _build(
        current, event, (Effect.ACTIVATE_PROVISIONING,),
        status=ACTIVE,
        cancellation_source=CancellationSource.NONE,
        next_billing_date=None,
        grace_period_end=None,
        cancelled_at=None,
    )


def _on_status_active(current, event: Event, policy: RetryPolicy) -> Transition:
    # A stale ACTIVE must not undo a pending or completed cancellation
    if current.status != EXPIRED:
        return _noop(current, event)
    return _build(
        current, event, (Effect.ACTIVATE_PROVISIONING,),
        status=ACTIVE,
        grace_period_end=None,
    )


def _on_status_suspended(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status != ACTIVE:
        return _noop(current, event)
    return _build(
        current, event,
        status=EXPIRED,
        grace_period_end=event.occurred_at + policy.grace_period,
    )


def _on_status_expired(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status not in (ACTIVE, PENDING):
        return _noop(current, event)
    return _build(
        current, event,
        status=EXPIRED,
        grace_period_end=event.occurred_at + policy.grace_period,
    )


def _on_status_cancelled(current, event: Event, policy: RetryPolicy) -> Transition:
    # Provisioning stays until the paid period ends; the pending-cancellation sweep revokes it
    if current.status not in (ACTIVE, PENDING):
        return _noop(current, event)
    return _build(
        current, event,
        status=PENDING,
        cancellation_source=CancellationSource.PROVIDER,
        next_billing_date=event.next_billing_date or current.next_billing_date,
    )


def _on_payment_failed(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status == CANCELLED:
        return _noop(current, event)

    now = event.occurred_at
    retry_count = (current.retry_count or 0) + 1
    retry_end = current.retry_period_end
    if current.payment_status != PaymentStatus.FAILED or retry_end is None or retry_end < now:
        retry_end = now + policy.retry_window

    fields: Dict[str, Any] = {
        "payment_status": PaymentStatus.FAILED,
        "retry_count": retry_count,
        "retry_period_end": retry_end,
        "last_payment_error": f"{event.detail or 'payment failed'} at {now.isoformat()}",
    }
    effects: Tuple[str, ...] = ()
    if retry_count >= policy.retry_threshold and current.status in (ACTIVE, PENDING):
        fields["status"] = EXPIRED
        fields["grace_period_end"] = now + policy.grace_period
        remote_live = event.remote_status in (None, RemoteState.ACTIVE, RemoteState.SUSPENDED)
        if remote_live and retry_policy.needs_remote_cancel(current):
            effects = (Effect.CANCEL_REMOTE,)
    return _build(current, event, effects, **fields)


def _on_payment_succeeded(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status == CANCELLED:
        return _noop(current, event)

    now = event.occurred_at
    fields: Dict[str, Any] = {
        "payment_status": PaymentStatus.PAID,
        "retry_count": 0,
        "retry_period_end": None,
        "last_payment_date": now,
        "end_date": calculate_end_date(current.billing_frequency, now),
    }
    effects: Tuple[str, ...] = ()
    if current.status == EXPIRED:
        fields["status"] = ACTIVE
        fields["grace_period_end"] = None
        effects = (Effect.ACTIVATE_PROVISIONING,)
    return _build(current, event, effects, **fields)


def _on_refunded(current, event: Event, policy: RetryPolicy) -> Transition:
    # Terminal regardless of any open retry or grace window
    if current.status == CANCELLED:
        return _noop(current, event)
    return _build(
        current, event, (Effect.DEACTIVATE_PROVISIONING, Effect.CANCEL_REMOTE),
        status=CANCELLED,
    )


# ── Admin / frontend actions ──

def _on_user_cancel(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status == PENDING:
        return _noop(current, event)
    if current.status != ACTIVE:
        raise IllegalTransition("cancel", "Only active subscriptions can be cancelled")
    return _build(
        current, event, (Effect.SCHEDULE_REMOTE_CANCEL,),
        status=PENDING,
        cancellation_source=CancellationSource.FRONTEND,
        next_billing_date=event.next_billing_date or current.end_date,
    )


def _on_force_cancel(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status == CANCELLED:
        return _noop(current, event)
    if current.status != PENDING:
        raise IllegalTransition(
            "force_cancel", "Only subscriptions pending cancellation can be force-cancelled"
        )
    return _build(current, event, _cancel_effects(current), status=CANCELLED)


def _on_resume(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status == ACTIVE:
        return _noop(current, event)
    if current.status != PENDING:
        raise IllegalTransition("resume", "Only subscriptions pending cancellation can be resumed")
    if current.cancellation_source != CancellationSource.FRONTEND:
        raise IllegalTransition(
            "resume", "Cancellation was initiated by the payment provider and cannot be resumed"
        )
    if event.remote_status != RemoteState.ACTIVE:
        raise IllegalTransition("resume", "The subscription is no longer active at the payment provider")
    return _build(
        current, event, (Effect.RESUME_REMOTE,),
        status=ACTIVE,
        cancellation_source=CancellationSource.NONE,
        next_billing_date=None,
        grace_period_end=None,
    )


def _on_admin_activate(current, event: Event, policy: RetryPolicy) -> Transition:
    if current.status == ACTIVE:
        return _noop(current, event)
    if current.status != EXPIRED:
        raise IllegalTransition("activate", "Only expired subscriptions can be activated")
    effects: Tuple[str, ...] = (Effect.ACTIVATE_PROVISIONING,)
    if event.remote_status == RemoteState.SUSPENDED:
        effects += (Effect.REACTIVATE_REMOTE,)
    now = event.occurred_at
    return _build(
        current, event, effects,
        status=ACTIVE,
        end_date=calculate_end_date(current.billing_frequency, now),
        payment_status=PaymentStatus.PAID,
        retry_count=0,
        retry_period_end=None,
        grace_period_end=None,
    )


# ── Scheduled sweeps ──

def _on_grace_sweep(current, event: Event, policy: RetryPolicy) -> Transition:
    if not retry_policy.is_grace_expired(current, event.occurred_at):
        return _noop(current, event)
    return _build(
        current, event, (Effect.DEACTIVATE_PROVISIONING, Effect.CANCEL_REMOTE),
        status=CANCELLED,
    )


def _on_pending_cancellation_due(current, event: Event, policy: RetryPolicy) -> Transition:
    now = event.occurred_at
    if current.status != PENDING:
        return _noop(current, event)
    if current.next_billing_date is None and current.end_date is not None and now >= current.end_date:
        if current.grace_period_end is None:
            return _build(current, event, grace_period_end=now + policy.grace_period)
    if not retry_policy.is_pending_cancellation_due(current, now):
        return _noop(current, event)
    return _build(current, event, _cancel_effects(current), status=CANCELLED)


def _on_retry_window_lapsed(current, event: Event, policy: RetryPolicy) -> Transition:
    if not retry_policy.is_retry_window_lapsed(current, event.occurred_at):
        return _noop(current, event)
    return _build(
        current, event,
        status=EXPIRED,
        grace_period_end=event.occurred_at + policy.grace_period,
    )


def _on_billing_period_lapsed(current, event: Event, policy: RetryPolicy) -> Transition:
    if not retry_policy.is_billing_period_lapsed(current, event.occurred_at):
        return _noop(current, event)
    return _on_payment_failed(current, event, policy)


_HANDLERS: Dict[str, Callable[[Any, Event, RetryPolicy], Transition]] = {
    EventKind.PROVIDER_ACTIVATED: _on_activated,
    EventKind.PROVIDER_STATUS_ACTIVE: _on_status_active,
    EventKind.PROVIDER_STATUS_SUSPENDED: _on_status_suspended,
    EventKind.PROVIDER_STATUS_CANCELLED: _on_status_cancelled,
    EventKind.PROVIDER_STATUS_EXPIRED: _on_status_expired,
    EventKind.PROVIDER_PAYMENT_FAILED: _on_payment_failed,
    EventKind.PROVIDER_PAYMENT_SUCCEEDED: _on_payment_succeeded,
    EventKind.PROVIDER_REFUNDED: _on_refunded,
    EventKind.USER_CANCEL: _on_user_cancel,
    EventKind.ADMIN_FORCE_CANCEL: _on_force_cancel,
    EventKind.ADMIN_RESUME: _on_resume,
    EventKind.ADMIN_ACTIVATE: _on_admin_activate,
    EventKind.GRACE_PERIOD_SWEEP: _on_grace_sweep,
    EventKind.PENDING_CANCELLATION_DUE: _on_pending_cancellation_due,
    EventKind.RETRY_WINDOW_LAPSED: _on_retry_window_lapsed,
    EventKind.BILLING_PERIOD_LAPSED: _on_billing_period_lapsed,
}


def transition(current, event: Event, policy: Optional[RetryPolicy] = None) -> Transition:
    """
    Compute the transition for ``event`` applied to ``current``.

    Args:
        current: Persisted subscription (any object with the Subscription attributes), or None
        event: Incoming event
        policy: Retry/grace windows (defaults: 3 days, 7 days, threshold 3)

    Returns:
        Transition with changes to persist and effects to run after commit

    Raises:
        IllegalTransition: a lifecycle action's precondition does not hold
        ValueError: unknown event kind
    """
    policy = policy or RetryPolicy()

    if current is None:
        if event.kind == EventKind.PROVIDER_ACTIVATED:
            return Transition(
                event.kind, None, ACTIVE,
                effects=(Effect.CREATE_RECORD, Effect.ACTIVATE_PROVISIONING),
            )
        return Transition(event.kind, None, None)

    seen = list(getattr(current, "recent_event_ids", None) or [])
    if event.event_id and event.event_id in seen:
        return _noop(current, event)

    handler = _HANDLERS.get(event.kind)
    if handler is None:
        raise ValueError(f"Unknown event kind: {event.kind}")

    result = handler(current, event, policy)
    if event.event_id and result.changes:
        result.changes["recent_event_ids"] = (seen + [event.event_id])[-RECENT_EVENT_IDS:]
    return result
