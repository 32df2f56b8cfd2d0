"""
Provisioning Notifiers - tell the downstream system to grant or revoke an application.

Notifiers available:
- LoggingNotifier: logs the request only (default when no URL is configured)
- HttpNotifier: POSTs a JSON envelope to PROVISIONING_WEBHOOK_URL

A failed notification is logged and reported as False. It never rolls back the local
subscription transition that triggered it.

Usage:
    from subsync.core.services.provisioning import get_notifier

    get_notifier().notify("activate", subscription.snapshot())
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

import requests

from subsync.core.config import get_settings

logger = logging.getLogger(__name__)


def _jsonable(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in snapshot.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        out[key] = value
    return out


class ProvisioningNotifier(ABC):
    """Interface for provisioning collaborators."""

    @abstractmethod
    def notify(self, action: str, subscription: Dict[str, Any]) -> bool:
        """
        Request activation or deactivation.

        Args:
            action: "activate" | "deactivate"
            subscription: Subscription snapshot

        Returns:
            True if the downstream system accepted the request
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass


class LoggingNotifier(ProvisioningNotifier):
    def get_name(self) -> str:
        return "logging"

    def notify(self, action: str, subscription: Dict[str, Any]) -> bool:
        logger.info(
            "Provisioning %s for subscription %s (application=%s, plan=%s)",
            action,
            subscription.get("id"),
            subscription.get("application_id"),
            subscription.get("external_plan_id"),
        )
        return True


class HttpNotifier(ProvisioningNotifier):
    """POSTs ``{"action": ..., "subscription": {...}}`` to a provisioning endpoint."""

    def __init__(self, url: str, timeout: int = 45, token: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.token = token

    def get_name(self) -> str:
        return f"http ({self.url})"

    def notify(self, action: str, subscription: Dict[str, Any]) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = requests.post(
                self.url,
                headers=headers,
                json={"action": action, "subscription": _jsonable(subscription)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Provisioning %s failed for subscription %s: %s", action, subscription.get("id"), e)
            return False

        if 200 <= response.status_code < 300:
            logger.info("Provisioning %s accepted for subscription %s", action, subscription.get("id"))
            return True
        logger.warning(
            "Provisioning %s rejected for subscription %s: %s %s",
            action,
            subscription.get("id"),
            response.status_code,
            response.text[:300],
        )
        return False


_notifier: Optional[ProvisioningNotifier] = None


def get_notifier() -> ProvisioningNotifier:
    """Return the configured notifier (HttpNotifier if PROVISIONING_WEBHOOK_URL is set)."""
    global _notifier
    if _notifier is None:
        settings = get_settings()
        if settings.provisioning_webhook_url:
            _notifier = HttpNotifier(settings.provisioning_webhook_url, timeout=settings.provider_timeout)
        else:
            _notifier = LoggingNotifier()
    return _notifier


def set_notifier(notifier: Optional[ProvisioningNotifier]) -> None:
    global _notifier
    _notifier = notifier
