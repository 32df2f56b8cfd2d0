"""
Webhooks Router - Incoming webhooks from payment gateways.

The raw body is read here because signature checks (Stripe) are computed over the exact bytes.
Processing is synchronous (database + provider HTTP), so it runs in the threadpool.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from subsync.api.dependencies import get_webhook_processor
from subsync.core.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{provider}")
async def payment_webhook(
    provider: str,
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Receive a webhook from a payment provider (paypal, stripe)."""
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    result = await run_in_threadpool(processor.handle, provider, body, headers)
    return JSONResponse(status_code=result.status_code, content=result.body)
