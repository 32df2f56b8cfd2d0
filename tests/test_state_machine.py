"""Pure transition rules: no database, no gateways."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from subsync.core.exceptions import IllegalTransition
from subsync.core.services.retry_policy import RetryPolicy
from subsync.core.services.state_machine import RECENT_EVENT_IDS, Effect, Event, transition
from subsync.utils.enums import CancellationSource, EventKind, PaymentStatus, RemoteState, SubscriptionStatus

NOW = datetime(2024, 3, 15, 12, 0, 0)
POLICY = RetryPolicy(retry_window=timedelta(days=3), grace_period=timedelta(days=7), retry_threshold=3)

ACTIVE = SubscriptionStatus.ACTIVE
PENDING = SubscriptionStatus.PENDING_CANCELLATION
CANCELLED = SubscriptionStatus.CANCELLED
EXPIRED = SubscriptionStatus.EXPIRED


def make_sub(**overrides):
    values = dict(
        id=1,
        status=ACTIVE,
        cancellation_source=CancellationSource.NONE,
        payment_status=PaymentStatus.PAID,
        retry_count=0,
        retry_period_end=None,
        grace_period_end=None,
        next_billing_date=None,
        start_date=NOW - timedelta(days=10),
        end_date=NOW + timedelta(days=20),
        last_payment_date=NOW - timedelta(days=10),
        last_payment_error=None,
        cancelled_at=None,
        recent_event_ids=[],
        billing_frequency="monthly",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def event(kind, **kwargs):
    kwargs.setdefault("occurred_at", NOW)
    return Event(kind=kind, **kwargs)


class TestCreation:
    def test_activation_without_record_creates_it(self):
        result = transition(None, event(EventKind.PROVIDER_ACTIVATED), POLICY)
        assert result.to_status == ACTIVE
        assert result.effects == (Effect.CREATE_RECORD, Effect.ACTIVATE_PROVISIONING)

    def test_other_events_without_record_are_noops(self):
        result = transition(None, event(EventKind.PROVIDER_PAYMENT_FAILED), POLICY)
        assert result.is_noop
        assert result.to_status is None


class TestProviderEvents:
    def test_activation_of_active_is_noop(self):
        result = transition(make_sub(), event(EventKind.PROVIDER_ACTIVATED), POLICY)
        assert result.is_noop

    def test_activation_of_expired_reactivates(self):
        sub = make_sub(status=EXPIRED, grace_period_end=NOW + timedelta(days=2))
        result = transition(sub, event(EventKind.PROVIDER_ACTIVATED), POLICY)
        assert result.to_status == ACTIVE
        assert result.changes["grace_period_end"] is None
        assert result.effects == (Effect.ACTIVATE_PROVISIONING,)

    def test_stale_active_does_not_undo_pending_cancellation(self):
        sub = make_sub(status=PENDING, cancellation_source=CancellationSource.FRONTEND)
        result = transition(sub, event(EventKind.PROVIDER_STATUS_ACTIVE), POLICY)
        assert result.is_noop

    def test_status_active_reactivates_expired(self):
        sub = make_sub(status=EXPIRED, grace_period_end=NOW + timedelta(days=1))
        result = transition(sub, event(EventKind.PROVIDER_STATUS_ACTIVE), POLICY)
        assert result.to_status == ACTIVE
        assert Effect.ACTIVATE_PROVISIONING in result.effects

    def test_suspension_expires_and_opens_grace(self):
        result = transition(make_sub(), event(EventKind.PROVIDER_STATUS_SUSPENDED), POLICY)
        assert result.to_status == EXPIRED
        assert result.changes["grace_period_end"] == NOW + timedelta(days=7)
        assert result.effects == ()

    def test_suspension_of_expired_keeps_original_grace(self):
        grace = NOW + timedelta(days=3)
        sub = make_sub(status=EXPIRED, grace_period_end=grace)
        result = transition(sub, event(EventKind.PROVIDER_STATUS_SUSPENDED), POLICY)
        assert result.is_noop

    def test_provider_cancel_is_pending_until_period_end(self):
        next_billing = NOW + timedelta(days=12)
        result = transition(
            make_sub(),
            event(EventKind.PROVIDER_STATUS_CANCELLED, next_billing_date=next_billing),
            POLICY,
        )
        assert result.to_status == PENDING
        assert result.changes["cancellation_source"] == CancellationSource.PROVIDER
        assert result.changes["next_billing_date"] == next_billing
        # Access continues until the period ends
        assert Effect.DEACTIVATE_PROVISIONING not in result.effects

    def test_provider_cancel_of_cancelled_is_noop(self):
        sub = make_sub(status=CANCELLED, cancelled_at=NOW - timedelta(days=1))
        result = transition(sub, event(EventKind.PROVIDER_STATUS_CANCELLED), POLICY)
        assert result.is_noop


class TestPaymentFailures:
    def test_first_failure_opens_retry_window(self):
        result = transition(make_sub(), event(EventKind.PROVIDER_PAYMENT_FAILED, detail="PAYMENT.SALE.DENIED"), POLICY)
        assert result.to_status == ACTIVE
        assert result.changes["payment_status"] == PaymentStatus.FAILED
        assert result.changes["retry_count"] == 1
        assert result.changes["retry_period_end"] == NOW + timedelta(days=3)
        assert result.changes["last_payment_error"].startswith("PAYMENT.SALE.DENIED")

    def test_failure_inside_window_keeps_window_end(self):
        window_end = NOW + timedelta(days=1)
        sub = make_sub(payment_status=PaymentStatus.FAILED, retry_count=1, retry_period_end=window_end)
        result = transition(sub, event(EventKind.PROVIDER_PAYMENT_FAILED), POLICY)
        assert result.changes["retry_count"] == 2
        assert "retry_period_end" not in result.changes

    def test_threshold_expires_and_cancels_remote(self):
        sub = make_sub(payment_status=PaymentStatus.FAILED, retry_count=2, retry_period_end=NOW + timedelta(days=1))
        result = transition(sub, event(EventKind.PROVIDER_PAYMENT_FAILED), POLICY)
        assert result.to_status == EXPIRED
        assert result.changes["grace_period_end"] == NOW + timedelta(days=7)
        assert result.effects == (Effect.CANCEL_REMOTE,)

    def test_threshold_skips_remote_cancel_when_provider_already_cancelled(self):
        sub = make_sub(payment_status=PaymentStatus.FAILED, retry_count=2, retry_period_end=NOW + timedelta(days=1))
        result = transition(
            sub, event(EventKind.PROVIDER_PAYMENT_FAILED, remote_status=RemoteState.CANCELLED), POLICY
        )
        assert result.to_status == EXPIRED
        assert result.effects == ()

    def test_threshold_skips_remote_cancel_for_provider_initiated(self):
        sub = make_sub(
            status=PENDING,
            cancellation_source=CancellationSource.PROVIDER,
            payment_status=PaymentStatus.FAILED,
            retry_count=2,
            retry_period_end=NOW + timedelta(days=1),
        )
        result = transition(sub, event(EventKind.PROVIDER_PAYMENT_FAILED), POLICY)
        assert result.to_status == EXPIRED
        assert Effect.CANCEL_REMOTE not in result.effects

    def test_failure_on_cancelled_is_noop(self):
        sub = make_sub(status=CANCELLED)
        assert transition(sub, event(EventKind.PROVIDER_PAYMENT_FAILED), POLICY).is_noop


class TestPaymentSuccess:
    def test_success_resets_retry_state_and_extends_period(self):
        sub = make_sub(payment_status=PaymentStatus.FAILED, retry_count=2, retry_period_end=NOW + timedelta(days=1))
        result = transition(sub, event(EventKind.PROVIDER_PAYMENT_SUCCEEDED), POLICY)
        assert result.to_status == ACTIVE
        assert result.changes["payment_status"] == PaymentStatus.PAID
        assert result.changes["retry_count"] == 0
        assert result.changes["retry_period_end"] is None
        assert result.changes["end_date"] == datetime(2024, 4, 15, 12, 0, 0)

    def test_success_restores_expired(self):
        sub = make_sub(status=EXPIRED, payment_status=PaymentStatus.FAILED, grace_period_end=NOW + timedelta(days=2))
        result = transition(sub, event(EventKind.PROVIDER_PAYMENT_SUCCEEDED), POLICY)
        assert result.to_status == ACTIVE
        assert result.effects == (Effect.ACTIVATE_PROVISIONING,)

    def test_success_on_cancelled_is_noop(self):
        sub = make_sub(status=CANCELLED)
        assert transition(sub, event(EventKind.PROVIDER_PAYMENT_SUCCEEDED), POLICY).is_noop


class TestRefund:
    def test_refund_is_terminal_even_in_grace(self):
        sub = make_sub(status=EXPIRED, grace_period_end=NOW + timedelta(days=5))
        result = transition(sub, event(EventKind.PROVIDER_REFUNDED), POLICY)
        assert result.to_status == CANCELLED
        assert result.changes["cancelled_at"] == NOW
        assert result.effects == (Effect.DEACTIVATE_PROVISIONING, Effect.CANCEL_REMOTE)

    def test_second_refund_is_noop(self):
        sub = make_sub(status=CANCELLED, cancelled_at=NOW - timedelta(hours=1))
        assert transition(sub, event(EventKind.PROVIDER_REFUNDED), POLICY).is_noop


class TestUserCancel:
    def test_cancel_schedules_end_of_period(self):
        next_billing = NOW + timedelta(days=9)
        result = transition(make_sub(), event(EventKind.USER_CANCEL, next_billing_date=next_billing), POLICY)
        assert result.to_status == PENDING
        assert result.changes["cancellation_source"] == CancellationSource.FRONTEND
        assert result.changes["next_billing_date"] == next_billing
        assert result.effects == (Effect.SCHEDULE_REMOTE_CANCEL,)

    def test_cancel_falls_back_to_end_date(self):
        sub = make_sub()
        result = transition(sub, event(EventKind.USER_CANCEL), POLICY)
        assert result.changes["next_billing_date"] == sub.end_date

    def test_cancel_of_pending_is_noop(self):
        sub = make_sub(status=PENDING, cancellation_source=CancellationSource.FRONTEND)
        assert transition(sub, event(EventKind.USER_CANCEL), POLICY).is_noop

    def test_cancel_of_expired_is_rejected(self):
        with pytest.raises(IllegalTransition) as exc:
            transition(make_sub(status=EXPIRED), event(EventKind.USER_CANCEL), POLICY)
        assert exc.value.code == "error_cannot_cancel"


class TestForceCancel:
    def test_force_cancel_of_frontend_pending_cancels_remote(self):
        sub = make_sub(status=PENDING, cancellation_source=CancellationSource.FRONTEND)
        result = transition(sub, event(EventKind.ADMIN_FORCE_CANCEL), POLICY)
        assert result.to_status == CANCELLED
        assert result.effects == (Effect.DEACTIVATE_PROVISIONING, Effect.CANCEL_REMOTE)

    def test_force_cancel_of_provider_pending_only_deprovisions(self):
        sub = make_sub(status=PENDING, cancellation_source=CancellationSource.PROVIDER)
        result = transition(sub, event(EventKind.ADMIN_FORCE_CANCEL), POLICY)
        assert result.effects == (Effect.DEACTIVATE_PROVISIONING,)

    def test_force_cancel_of_active_is_rejected(self):
        with pytest.raises(IllegalTransition) as exc:
            transition(make_sub(), event(EventKind.ADMIN_FORCE_CANCEL), POLICY)
        assert exc.value.code == "error_cannot_force_cancel"

    def test_force_cancel_of_cancelled_is_noop(self):
        assert transition(make_sub(status=CANCELLED), event(EventKind.ADMIN_FORCE_CANCEL), POLICY).is_noop


class TestResume:
    def test_resume_frontend_cancellation(self):
        sub = make_sub(
            status=PENDING,
            cancellation_source=CancellationSource.FRONTEND,
            next_billing_date=NOW + timedelta(days=5),
        )
        result = transition(sub, event(EventKind.ADMIN_RESUME, remote_status=RemoteState.ACTIVE), POLICY)
        assert result.to_status == ACTIVE
        assert result.changes["cancellation_source"] == CancellationSource.NONE
        assert result.changes["next_billing_date"] is None
        assert result.effects == (Effect.RESUME_REMOTE,)

    def test_provider_initiated_cancellation_cannot_be_resumed(self):
        sub = make_sub(status=PENDING, cancellation_source=CancellationSource.PROVIDER)
        with pytest.raises(IllegalTransition) as exc:
            transition(sub, event(EventKind.ADMIN_RESUME, remote_status=RemoteState.ACTIVE), POLICY)
        assert exc.value.code == "error_cannot_resume"

    def test_resume_requires_remote_active(self):
        sub = make_sub(status=PENDING, cancellation_source=CancellationSource.FRONTEND)
        with pytest.raises(IllegalTransition):
            transition(sub, event(EventKind.ADMIN_RESUME, remote_status=RemoteState.CANCELLED), POLICY)

    def test_resume_of_active_is_noop(self):
        assert transition(make_sub(), event(EventKind.ADMIN_RESUME), POLICY).is_noop


class TestAdminActivate:
    def test_activate_expired(self):
        sub = make_sub(status=EXPIRED, payment_status=PaymentStatus.FAILED, retry_count=3,
                       grace_period_end=NOW + timedelta(days=2))
        result = transition(sub, event(EventKind.ADMIN_ACTIVATE, remote_status=RemoteState.ACTIVE), POLICY)
        assert result.to_status == ACTIVE
        assert result.changes["payment_status"] == PaymentStatus.PAID
        assert result.changes["retry_count"] == 0
        assert result.changes["end_date"] == datetime(2024, 4, 15, 12, 0, 0)
        assert result.effects == (Effect.ACTIVATE_PROVISIONING,)

    def test_activate_reactivates_suspended_remote(self):
        sub = make_sub(status=EXPIRED, grace_period_end=NOW + timedelta(days=2))
        result = transition(sub, event(EventKind.ADMIN_ACTIVATE, remote_status=RemoteState.SUSPENDED), POLICY)
        assert result.effects == (Effect.ACTIVATE_PROVISIONING, Effect.REACTIVATE_REMOTE)

    def test_activate_cancelled_is_rejected(self):
        with pytest.raises(IllegalTransition) as exc:
            transition(make_sub(status=CANCELLED), event(EventKind.ADMIN_ACTIVATE), POLICY)
        assert exc.value.code == "error_cannot_activate"


class TestSweepEvents:
    def test_grace_sweep_cancels_after_grace(self):
        sub = make_sub(status=EXPIRED, grace_period_end=NOW - timedelta(seconds=1))
        result = transition(sub, event(EventKind.GRACE_PERIOD_SWEEP), POLICY)
        assert result.to_status == CANCELLED
        assert result.effects == (Effect.DEACTIVATE_PROVISIONING, Effect.CANCEL_REMOTE)

    def test_grace_sweep_inside_grace_is_noop(self):
        sub = make_sub(status=EXPIRED, grace_period_end=NOW + timedelta(hours=1))
        assert transition(sub, event(EventKind.GRACE_PERIOD_SWEEP), POLICY).is_noop

    def test_pending_cancellation_completes_at_next_billing(self):
        sub = make_sub(
            status=PENDING,
            cancellation_source=CancellationSource.FRONTEND,
            next_billing_date=NOW - timedelta(minutes=5),
        )
        result = transition(sub, event(EventKind.PENDING_CANCELLATION_DUE), POLICY)
        assert result.to_status == CANCELLED
        assert Effect.CANCEL_REMOTE in result.effects

    def test_pending_cancellation_without_next_billing_opens_grace_first(self):
        sub = make_sub(
            status=PENDING,
            cancellation_source=CancellationSource.PROVIDER,
            end_date=NOW - timedelta(days=1),
        )
        first = transition(sub, event(EventKind.PENDING_CANCELLATION_DUE), POLICY)
        assert first.to_status == PENDING
        assert first.changes == {"grace_period_end": NOW + timedelta(days=7)}

        sub.grace_period_end = first.changes["grace_period_end"]
        later = event(EventKind.PENDING_CANCELLATION_DUE, occurred_at=NOW + timedelta(days=8))
        second = transition(sub, later, POLICY)
        assert second.to_status == CANCELLED
        assert second.effects == (Effect.DEACTIVATE_PROVISIONING,)

    def test_retry_window_lapse_expires(self):
        sub = make_sub(payment_status=PaymentStatus.FAILED, retry_count=1, retry_period_end=NOW - timedelta(hours=1))
        result = transition(sub, event(EventKind.RETRY_WINDOW_LAPSED), POLICY)
        assert result.to_status == EXPIRED
        assert result.changes["grace_period_end"] == NOW + timedelta(days=7)

    def test_billing_period_lapse_counts_as_failed_payment(self):
        sub = make_sub(end_date=NOW - timedelta(days=1))
        result = transition(sub, event(EventKind.BILLING_PERIOD_LAPSED), POLICY)
        assert result.to_status == ACTIVE
        assert result.changes["payment_status"] == PaymentStatus.FAILED
        assert result.changes["retry_count"] == 1

    def test_billing_period_not_lapsed_is_noop(self):
        assert transition(make_sub(), event(EventKind.BILLING_PERIOD_LAPSED), POLICY).is_noop


class TestIdempotency:
    def test_event_id_is_recorded(self):
        result = transition(make_sub(), event(EventKind.PROVIDER_STATUS_SUSPENDED, event_id="WH-1"), POLICY)
        assert result.changes["recent_event_ids"] == ["WH-1"]

    def test_redelivered_event_is_noop(self):
        sub = make_sub(retry_count=1, payment_status=PaymentStatus.FAILED,
                       retry_period_end=NOW + timedelta(days=2), recent_event_ids=["WH-1"])
        result = transition(sub, event(EventKind.PROVIDER_PAYMENT_FAILED, event_id="WH-1"), POLICY)
        assert result.is_noop

    def test_older_event_redelivered_after_newer_is_noop(self):
        sub = make_sub(retry_count=2, payment_status=PaymentStatus.FAILED,
                       retry_period_end=NOW + timedelta(days=2), recent_event_ids=["WH-A", "WH-B"])
        result = transition(sub, event(EventKind.PROVIDER_PAYMENT_FAILED, event_id="WH-A"), POLICY)
        assert result.is_noop

    def test_remembered_event_ids_are_bounded(self):
        seen = [f"WH-{n}" for n in range(RECENT_EVENT_IDS)]
        result = transition(make_sub(recent_event_ids=seen),
                            event(EventKind.PROVIDER_STATUS_SUSPENDED, event_id="WH-NEW"), POLICY)
        remembered = result.changes["recent_event_ids"]
        assert len(remembered) == RECENT_EVENT_IDS
        assert remembered[-1] == "WH-NEW"
        assert "WH-0" not in remembered

    def test_noop_does_not_record_event_id(self):
        result = transition(make_sub(), event(EventKind.PROVIDER_ACTIVATED, event_id="WH-2"), POLICY)
        assert result.changes == {}

    def test_unknown_event_kind_raises(self):
        with pytest.raises(ValueError):
            transition(make_sub(), event("ProviderSomethingElse"), POLICY)
