from fastapi import Request
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class SubscriptionError(Exception):
    """Base class for subscription domain errors."""


class SubscriptionNotFound(SubscriptionError):
    def __init__(self, subscription_id):
        super().__init__(f"Subscription {subscription_id} not found")
        self.subscription_id = subscription_id


class IllegalTransition(SubscriptionError):
    """A lifecycle action whose precondition does not hold."""

    def __init__(self, action: str, message: str):
        super().__init__(message)
        self.action = action
        self.message = message

    @property
    def code(self) -> str:
        return f"error_cannot_{self.action}"


class WebhookPayloadError(SubscriptionError):
    """Unparsable or incomplete webhook body."""


class GatewayDisabled(SubscriptionError):
    def __init__(self, gateway: str):
        super().__init__(f"{gateway} gateway not enabled")
        self.gateway = gateway


class UnknownGateway(SubscriptionError):
    def __init__(self, gateway: str):
        super().__init__(f"Unknown payment gateway: {gateway}")
        self.gateway = gateway


class ConcurrentUpdateError(SubscriptionError):
    """Optimistic retries exhausted for one subscription."""


async def not_found_handler(request: Request, exc):
    detail = getattr(exc, "detail", None)
    if not detail or detail == "Not Found":
        detail = f"Endpoint '{request.url.path}' not found"
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": detail,
            "path": request.url.path,
        },
    )


async def internal_error_handler(request: Request, exc):
    logger.exception(f"Internal error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "Internal server error. Check server logs.",
        },
    )
