"""
Service factories for FastAPI ``Depends``.

Services are cheap to build; the long-lived state (gateways, notifier, locks, settings) lives in
module singletons, so tests swap those rather than overriding each dependency.
"""
from fastapi import Depends

from subsync.core.services.checkout_service import CheckoutService
from subsync.core.services.lifecycle_service import LifecycleService
from subsync.core.services.subscription_service import SubscriptionService, default_subscription_service
from subsync.core.services.sweep_service import SubscriptionSweeper
from subsync.core.services.webhook_processor import WebhookProcessor
from subsync.payments import get_gateway_registry


def get_subscription_service() -> SubscriptionService:
    return default_subscription_service()


def get_lifecycle_service(
    service: SubscriptionService = Depends(get_subscription_service),
) -> LifecycleService:
    return LifecycleService(service, service.gateways)


def get_checkout_service(
    service: SubscriptionService = Depends(get_subscription_service),
) -> CheckoutService:
    return CheckoutService(service, service.gateways)


def get_webhook_processor(
    service: SubscriptionService = Depends(get_subscription_service),
) -> WebhookProcessor:
    return WebhookProcessor(service, get_gateway_registry())


def get_sweeper(
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionSweeper:
    return SubscriptionSweeper(service)
