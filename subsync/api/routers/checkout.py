"""
Checkout Router - customer-facing endpoints.

Starting a checkout, the provider's return redirect, and the customer's own cancel/resume.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from subsync.api.dependencies import get_checkout_service, get_lifecycle_service, get_subscription_service
from subsync.api.schemas import (
    ActionResponse,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutReturnResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
)
from subsync.core.auth import UserInfo, get_current_user
from subsync.core.exceptions import GatewayDisabled, UnknownGateway
from subsync.core.services.checkout_service import CheckoutService
from subsync.core.services.lifecycle_service import ActionResult, LifecycleService
from subsync.core.services.subscription_service import SubscriptionService
from subsync.database.repositories.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_id(user: UserInfo) -> int:
    try:
        return int(user.uid)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be a numeric user id")


def action_response(result: ActionResult) -> ActionResponse:
    if not result.success and result.code == "error_not_found":
        raise HTTPException(status_code=404, detail=result.message)
    if not result.success and result.code == "error_conflict":
        raise HTTPException(status_code=409, detail=result.message)
    return ActionResponse(**result.to_dict())


def _require_owner(service: SubscriptionService, subscription_id: int, user: UserInfo) -> None:
    snapshot = service.get(subscription_id)
    # Someone else's subscription looks exactly like a missing one
    if snapshot is None or snapshot["user_id"] != _user_id(user):
        raise HTTPException(status_code=404, detail="Subscription not found")


@router.post("/subscriptions", response_model=CheckoutResponse, status_code=201)
def create_checkout(
    data: CheckoutRequest,
    user: UserInfo = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Start a subscription checkout; redirect the customer to ``checkout_url``."""
    try:
        result = checkout.create_subscription(
            payment_method=data.payment_method,
            plan=data.plan.to_plan(),
            checkout_data={"user_id": _user_id(user), "application_id": data.application_id},
            customer_data=data.customer_data,
            success_url=data.success_url,
            cancel_url=data.cancel_url,
        )
    except UnknownGateway as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayDisabled as e:
        raise HTTPException(status_code=403, detail=str(e))

    if not result.success:
        raise HTTPException(status_code=502, detail=result.error or "Payment provider error")
    return CheckoutResponse(
        session_key=result.session_key,
        checkout_url=result.checkout_url,
        remote_subscription_id=result.remote_subscription_id,
    )


@router.get("/return", response_model=CheckoutReturnResponse)
def checkout_return(
    session_key: str = Query(..., min_length=1),
    subscription_id: Optional[str] = Query(None, description="Remote subscription id (PayPal appends it)"),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Provider return redirect. Safe to call repeatedly; the webhook may already have won."""
    result = checkout.confirm_return(session_key, subscription_id)
    if not result.success and result.state == "failed":
        raise HTTPException(status_code=404, detail=result.message)
    return CheckoutReturnResponse(state=result.state, message=result.message, subscription=result.subscription)


@router.get("/subscriptions", response_model=SubscriptionListResponse)
def list_my_subscriptions(
    user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    with service.session_factory() as db:
        items = [s.snapshot() for s in SubscriptionRepository(db).list_for_user(_user_id(user))]
    return SubscriptionListResponse(items=items, total=len(items))


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def get_my_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    _require_owner(service, subscription_id, user)
    return service.get(subscription_id)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=ActionResponse)
def cancel_my_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Cancel at the end of the paid period."""
    _require_owner(service, subscription_id, user)
    return action_response(lifecycle.cancel(subscription_id))


@router.post("/subscriptions/{subscription_id}/resume", response_model=ActionResponse)
def resume_my_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Undo a pending cancellation the customer requested."""
    _require_owner(service, subscription_id, user)
    return action_response(lifecycle.resume(subscription_id))
