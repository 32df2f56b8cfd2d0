"""
Configuration

Two layers:

- Settings: process-wide knobs read once from the environment (.env is loaded by the API entrypoint).
- ConfigProvider: read-only key/value access to gateway credentials. Backed by environment
  variables, the ``system_configuration`` table, or a chain of both.

Components receive a Settings / GatewayConfig at construction time; nothing in the domain
code reads os.environ directly.

Usage:
    from subsync.core.config import get_settings, load_gateway_config, EnvConfigProvider

    settings = get_settings()
    paypal = load_gateway_config("paypal", EnvConfigProvider(), timeout=settings.provider_timeout)
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using {default}")
        return default


def _parse_tax_rates(raw: Optional[str]) -> Dict[str, Decimal]:
    """TAX_RATES is a JSON object of country code -> percentage, e.g. {"DE": 19, "FR": 20}."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("TAX_RATES is not valid JSON, ignoring")
        return {}
    return {str(k).upper(): Decimal(str(v)) for k, v in data.items()}


@dataclass
class Settings:
    database_url: str = "sqlite:///./subsync.db"
    retry_window_days: int = 3
    grace_period_days: int = 7
    retry_threshold: int = 3
    checkout_ttl_seconds: int = 3600
    provider_timeout: int = 45
    sweep_interval_minutes: int = 60
    scheduler_enabled: bool = True
    provisioning_webhook_url: str = ""
    admin_api_token: str = ""
    auth_dev_mode: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=list)
    tax_rates: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def retry_window(self) -> timedelta:
        return timedelta(days=self.retry_window_days)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.grace_period_days)

    @property
    def checkout_ttl(self) -> timedelta:
        return timedelta(seconds=self.checkout_ttl_seconds)

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            retry_window_days=_env_int("RETRY_WINDOW_DAYS", 3),
            grace_period_days=_env_int("GRACE_PERIOD_DAYS", 7),
            retry_threshold=_env_int("RETRY_THRESHOLD", 3),
            checkout_ttl_seconds=_env_int("CHECKOUT_TTL_SECONDS", 3600),
            provider_timeout=_env_int("PROVIDER_TIMEOUT_SECONDS", 45),
            sweep_interval_minutes=_env_int("SWEEP_INTERVAL_MINUTES", 60),
            scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
            provisioning_webhook_url=os.getenv("PROVISIONING_WEBHOOK_URL", ""),
            admin_api_token=os.getenv("ADMIN_API_TOKEN", ""),
            auth_dev_mode=_env_bool("AUTH_DEV_MODE", False),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            tax_rates=_parse_tax_rates(os.getenv("TAX_RATES")),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or build the process-wide settings."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (tests change env between cases)."""
    global _settings
    _settings = None


# ── Configuration providers ──

class ConfigProvider(ABC):
    """Read-only key/value configuration source."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass


class EnvConfigProvider(ConfigProvider):
    """Maps ``paypal.client_id`` to the PAYPAL_CLIENT_ID environment variable."""

    def get(self, key: str, default: Any = None) -> Any:
        env_name = key.replace(".", "_").replace("-", "_").upper()
        value = os.getenv(env_name)
        return default if value is None or value == "" else value


class DictConfigProvider(ConfigProvider):
    """In-memory provider, flat keys (``paypal.client_id``)."""

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self.values = dict(values or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


class DatabaseConfigProvider(ConfigProvider):
    """
    Reads gateway settings from the ``system_configuration`` table.

    A row keyed ``gateway.paypal`` holds a JSON object; ``paypal.client_id`` resolves to its
    ``client_id`` member.
    """

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def get(self, key: str, default: Any = None) -> Any:
        from subsync.database.models.system_configuration import SystemConfiguration

        section, _, name = key.partition(".")
        with self.session_factory() as db:
            row = db.get(SystemConfiguration, f"gateway.{section}")
            if row is None or not isinstance(row.value, dict):
                return default
            value = row.value.get(name)
        return default if value is None or value == "" else value


class ChainConfigProvider(ConfigProvider):
    """First provider that has a value wins."""

    _MISSING = object()

    def __init__(self, *providers: ConfigProvider):
        self.providers = providers

    def get(self, key: str, default: Any = None) -> Any:
        for provider in self.providers:
            try:
                value = provider.get(key, self._MISSING)
            except Exception as e:
                logger.warning(f"Config provider {type(provider).__name__} failed for {key}: {e}")
                continue
            if value is not self._MISSING:
                return value
        return default


@dataclass
class GatewayConfig:
    name: str
    enabled: bool = False
    sandbox: bool = True
    client_id: str = ""
    client_secret: str = ""
    webhook_id: str = ""
    webhook_secret: str = ""
    product_name: str = "Subscription"
    timeout: int = 45


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def load_gateway_config(name: str, provider: ConfigProvider, timeout: int = 45) -> GatewayConfig:
    """Build a GatewayConfig for ``name`` from a configuration provider."""
    return GatewayConfig(
        name=name,
        enabled=_as_bool(provider.get(f"{name}.enabled"), name == "manual"),
        sandbox=_as_bool(provider.get(f"{name}.sandbox"), True),
        client_id=str(provider.get(f"{name}.client_id", "")),
        client_secret=str(provider.get(f"{name}.client_secret", "")),
        webhook_id=str(provider.get(f"{name}.webhook_id", "")),
        webhook_secret=str(provider.get(f"{name}.webhook_secret", "")),
        product_name=str(provider.get(f"{name}.product_name", "Subscription")),
        timeout=int(provider.get(f"{name}.timeout", timeout)),
    )
