"""
String constants for subscription fields.
Using plain strings (not Enums) so values map 1:1 onto database columns and webhook payloads.
"""


class SubscriptionStatus:
    ACTIVE = "active"
    PENDING_CANCELLATION = "pending-cancellation"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    ALL = (ACTIVE, PENDING_CANCELLATION, CANCELLED, EXPIRED)
    DELETABLE = (CANCELLED, EXPIRED)


class CancellationSource:
    NONE = "none"
    FRONTEND = "frontend"
    PROVIDER = "provider"


class PaymentStatus:
    PAID = "paid"
    FAILED = "failed"


class PaymentMethod:
    MANUAL = "manual"
    PAYPAL = "paypal"
    STRIPE = "stripe"


class BillingFrequency:
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    BIANNUALLY = "biannually"
    ANNUALLY = "annually"


class ProvisioningAction:
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


class RemoteState:
    """Provider-neutral remote subscription states (PayPal vocabulary)."""
    APPROVAL_PENDING = "APPROVAL_PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"


class EventKind:
    # Provider-driven
    PROVIDER_ACTIVATED = "provider_activated"
    PROVIDER_STATUS_ACTIVE = "provider_status_active"
    PROVIDER_STATUS_SUSPENDED = "provider_status_suspended"
    PROVIDER_STATUS_CANCELLED = "provider_status_cancelled"
    PROVIDER_STATUS_EXPIRED = "provider_status_expired"
    PROVIDER_PAYMENT_FAILED = "provider_payment_failed"
    PROVIDER_PAYMENT_SUCCEEDED = "provider_payment_succeeded"
    PROVIDER_REFUNDED = "provider_refunded"

    # Admin / frontend
    USER_CANCEL = "user_cancel"
    ADMIN_FORCE_CANCEL = "admin_force_cancel"
    ADMIN_RESUME = "admin_resume"
    ADMIN_ACTIVATE = "admin_activate"

    # Scheduled sweeps
    GRACE_PERIOD_SWEEP = "grace_period_sweep"
    PENDING_CANCELLATION_DUE = "pending_cancellation_due"
    RETRY_WINDOW_LAPSED = "retry_window_lapsed"
    BILLING_PERIOD_LAPSED = "billing_period_lapsed"
