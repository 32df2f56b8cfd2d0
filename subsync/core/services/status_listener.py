"""
Status Listeners - observers told about every subscription status change.

The customer-email collaborator subscribes here: each committed transition that moves a
subscription to a different status (including creation, where the old status is None)
produces one ``status_changed(old, new, subscription)`` call.

Listeners available:
- LoggingStatusListener: logs the change (default)

Listener failures are logged by the caller and never undo the transition.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class StatusListener(ABC):
    """Interface for status-change observers."""

    @abstractmethod
    def status_changed(self, old_status: Optional[str], new_status: str, subscription: Dict[str, Any]) -> None:
        """
        Called once per committed status change.

        Args:
            old_status: Status before the transition, None for a newly created subscription
            new_status: Status after the transition
            subscription: Subscription snapshot after the transition
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass


class LoggingStatusListener(StatusListener):
    def get_name(self) -> str:
        return "logging"

    def status_changed(self, old_status: Optional[str], new_status: str, subscription: Dict[str, Any]) -> None:
        logger.info(
            "Subscription %s status changed: %s -> %s (user=%s)",
            subscription.get("id"),
            old_status or "new",
            new_status,
            subscription.get("user_id"),
        )


_listener: Optional[StatusListener] = None


def get_status_listener() -> StatusListener:
    global _listener
    if _listener is None:
        _listener = LoggingStatusListener()
    return _listener


def set_status_listener(listener: Optional[StatusListener]) -> None:
    global _listener
    _listener = listener
