"""Database models package - import all models so Alembic can discover them."""

from subsync.database.models.model_base import SqlAlchemyModel
from subsync.database.models.subscription import Subscription
from subsync.database.models.checkout_intent import CheckoutIntentRecord
from subsync.database.models.system_configuration import SystemConfiguration

__all__ = [
    "SqlAlchemyModel",
    "Subscription",
    "CheckoutIntentRecord",
    "SystemConfiguration",
]
