"""
Admin Router - Admin-only endpoints for subscriptions, sweeps and the scheduler.

All endpoints require get_current_admin (ADMIN_API_TOKEN bearer).
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from subsync.api.dependencies import get_lifecycle_service, get_subscription_service, get_sweeper
from subsync.api.routers.checkout import action_response
from subsync.api.schemas import (
    ActionResponse,
    BulkActionItem,
    BulkActionRequest,
    BulkActionResponse,
    StatsResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    SweepResponse,
)
from subsync.core.auth import UserInfo, get_current_admin
from subsync.core.services.lifecycle_service import ActionResult, LifecycleService
from subsync.core.services.subscription_service import SubscriptionService
from subsync.core.services.sweep_service import SubscriptionSweeper
from subsync.database.repositories.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)

router = APIRouter()


def _bulk_response(results: Dict[int, ActionResult]) -> BulkActionResponse:
    items = [
        BulkActionItem(id=sid, success=r.success, message=r.message, code=r.code)
        for sid, r in results.items()
    ]
    succeeded = sum(1 for item in items if item.success)
    return BulkActionResponse(succeeded=succeeded, failed=len(items) - succeeded, results=items)


# ── Subscriptions ──

@router.get("/subscriptions", response_model=SubscriptionListResponse)
def list_subscriptions(
    status: Optional[str] = Query(None, description="Filter by status"),
    payment_method: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user: UserInfo = Depends(get_current_admin),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """List subscriptions (newest first)."""
    with service.session_factory() as db:
        repo = SubscriptionRepository(db)
        items = [
            s.snapshot()
            for s in repo.list_filtered(
                status=status, payment_method=payment_method, user_id=user_id, skip=skip, limit=limit
            )
        ]
        total = repo.count_filtered(status=status, payment_method=payment_method, user_id=user_id)
    return SubscriptionListResponse(items=items, total=total)


@router.get("/subscriptions/stats", response_model=StatsResponse)
def subscription_stats(
    user: UserInfo = Depends(get_current_admin),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Count of subscriptions per status."""
    with service.session_factory() as db:
        by_status = SubscriptionRepository(db).count_by_status()
    return StatsResponse(total=sum(by_status.values()), by_status=by_status)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_admin),
    service: SubscriptionService = Depends(get_subscription_service),
):
    snapshot = service.get(subscription_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return snapshot


@router.post("/subscriptions/bulk-cancel", response_model=BulkActionResponse)
def bulk_cancel_subscriptions(
    data: BulkActionRequest,
    user: UserInfo = Depends(get_current_admin),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Force-cancel several subscriptions; each succeeds or fails on its own."""
    logger.info(f"Admin {user.uid}: bulk cancel of {len(data.ids)} subscriptions")
    return _bulk_response(lifecycle.bulk_cancel(data.ids))


@router.post("/subscriptions/bulk-delete", response_model=BulkActionResponse)
def bulk_delete_subscriptions(
    data: BulkActionRequest,
    user: UserInfo = Depends(get_current_admin),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    logger.info(f"Admin {user.uid}: bulk delete of {len(data.ids)} subscriptions")
    return _bulk_response(lifecycle.bulk_delete(data.ids))


@router.post("/subscriptions/{subscription_id}/cancel", response_model=ActionResponse)
def force_cancel_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_admin),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Complete a pending cancellation now instead of at the end of the period."""
    return action_response(lifecycle.force_cancel(subscription_id))


@router.post("/subscriptions/{subscription_id}/resume", response_model=ActionResponse)
def resume_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_admin),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    return action_response(lifecycle.resume(subscription_id))


@router.post("/subscriptions/{subscription_id}/activate", response_model=ActionResponse)
def activate_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_admin),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Reactivate an expired subscription (e.g. after an off-platform payment)."""
    return action_response(lifecycle.activate(subscription_id))


@router.delete("/subscriptions/{subscription_id}", response_model=ActionResponse)
def delete_subscription(
    subscription_id: int,
    user: UserInfo = Depends(get_current_admin),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Delete a cancelled or expired subscription."""
    return action_response(lifecycle.delete(subscription_id))


# ── Sweeps & scheduler ──

@router.post("/sweep", response_model=SweepResponse)
def run_sweep(
    user: UserInfo = Depends(get_current_admin),
    sweeper: SubscriptionSweeper = Depends(get_sweeper),
):
    """Run every sweep now."""
    logger.info(f"Admin {user.uid}: manual sweep")
    return sweeper.run_all().to_dict()


@router.get("/scheduler/jobs", response_model=dict)
def list_scheduler_jobs(user: UserInfo = Depends(get_current_admin)):
    from subsync.core.services.scheduler_service import get_scheduler_jobs
    return {"jobs": get_scheduler_jobs()}
