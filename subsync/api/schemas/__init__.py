from subsync.api.schemas.subscription import (
    ActionResponse,
    BulkActionItem,
    BulkActionRequest,
    BulkActionResponse,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutReturnResponse,
    PlanSchema,
    StatsResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    SweepResponse,
)
