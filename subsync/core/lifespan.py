from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from subsync.core.config import get_settings
from subsync.core.logging import setup_logger

logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("🚀 SubSync API starting...")

    # Database
    try:
        from subsync.database.session import engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info(f"✅ Database connection established ({engine.dialect.name})")
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")

    # Gateways
    try:
        from subsync.payments import get_gateway_registry
        registry = get_gateway_registry()
        enabled = [name for name in registry.names() if registry.get(name).enabled]
        logger.info(f"✅ Payment gateways enabled: {', '.join(enabled) or 'none'}")
    except Exception as e:
        logger.error(f"❌ Failed to load payment gateways: {e}")

    # Scheduler
    if settings.scheduler_enabled:
        try:
            from subsync.core.services.scheduler_service import start_scheduler
            start_scheduler()
            logger.info("✅ APScheduler started")
        except Exception as e:
            logger.error(f"❌ Failed to start APScheduler: {e}")
    else:
        logger.info("APScheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    logger.info("🛑 SubSync API shutting down...")

    if settings.scheduler_enabled:
        try:
            from subsync.core.services.scheduler_service import shutdown_scheduler
            shutdown_scheduler()
            logger.info("✅ APScheduler stopped")
        except Exception as e:
            logger.error(f"❌ Failed to stop APScheduler: {e}")
