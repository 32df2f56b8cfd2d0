"""
Payment gateways - one GatewayAdapter per provider.

Usage:
    from subsync.payments import get_gateway_registry

    gateway = get_gateway_registry().get("paypal")
    result = gateway.fetch_remote_status("I-BW452GLLEP1G")

Gateways are configured from a ConfigProvider (environment and ``system_configuration`` rows).
Tests swap the registry with set_gateway_registry().
"""

import logging
from typing import Dict, Iterable, List, Optional

from subsync.core.config import (
    ChainConfigProvider,
    ConfigProvider,
    DatabaseConfigProvider,
    EnvConfigProvider,
    GatewayConfig,
    get_settings,
    load_gateway_config,
)
from subsync.core.exceptions import UnknownGateway
from subsync.payments.base import (
    GatewayAdapter,
    GatewayError,
    GatewayEvent,
    Plan,
    RemoteStatus,
    RemoteSubscription,
)
from subsync.payments.manual_provider import ManualGateway
from subsync.payments.paypal_provider import PayPalGateway
from subsync.payments.stripe_provider import StripeGateway

logger = logging.getLogger(__name__)

GATEWAY_CLASSES = {
    "manual": ManualGateway,
    "paypal": PayPalGateway,
    "stripe": StripeGateway,
}


def build_gateway(config: GatewayConfig) -> GatewayAdapter:
    """Instantiate the adapter class registered for ``config.name``."""
    try:
        gateway_class = GATEWAY_CLASSES[config.name]
    except KeyError:
        raise UnknownGateway(config.name)
    return gateway_class(config)


class GatewayRegistry:
    """Adapters keyed by payment method."""

    def __init__(self, gateways: Iterable[GatewayAdapter] = ()):
        self._gateways: Dict[str, GatewayAdapter] = {}
        for gateway in gateways:
            self.register(gateway)

    def register(self, gateway: GatewayAdapter) -> None:
        self._gateways[gateway.get_name()] = gateway

    def get(self, name: str) -> GatewayAdapter:
        try:
            return self._gateways[name]
        except KeyError:
            raise UnknownGateway(name)

    def names(self) -> List[str]:
        return sorted(self._gateways)

    @classmethod
    def from_config(cls, provider: ConfigProvider, timeout: int = 45) -> "GatewayRegistry":
        return cls(
            build_gateway(load_gateway_config(name, provider, timeout=timeout))
            for name in GATEWAY_CLASSES
        )


_registry: Optional[GatewayRegistry] = None


def get_gateway_registry() -> GatewayRegistry:
    """Get or build the process-wide registry (database rows override environment)."""
    global _registry
    if _registry is None:
        from subsync.database.session import get_session

        settings = get_settings()
        provider = ChainConfigProvider(DatabaseConfigProvider(get_session), EnvConfigProvider())
        _registry = GatewayRegistry.from_config(provider, timeout=settings.provider_timeout)
        logger.info(f"Payment gateways loaded: {_registry.names()}")
    return _registry


def set_gateway_registry(registry: Optional[GatewayRegistry]) -> None:
    global _registry
    _registry = registry


__all__ = [
    "get_gateway_registry",
    "set_gateway_registry",
    "build_gateway",
    "GatewayRegistry",
    "GatewayAdapter",
    "GatewayError",
    "GatewayEvent",
    "ManualGateway",
    "PayPalGateway",
    "StripeGateway",
    "Plan",
    "RemoteStatus",
    "RemoteSubscription",
]
