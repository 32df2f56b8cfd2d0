"""
SubSync - FastAPI Application

Keeps local subscription records consistent with PayPal / Stripe through webhooks,
checkout returns, admin actions and scheduled sweeps.

Run:
    uvicorn subsync.api.main:app --host 0.0.0.0 --port 8000

Routers:
    /webhooks/{provider}   provider callbacks (no auth; signatures checked per gateway)
    /checkout/...          customer checkout, return redirect, cancel/resume (X-User-Id)
    /admin/...             lifecycle actions, listings, sweeps (ADMIN_API_TOKEN)
"""

from dotenv import load_dotenv

load_dotenv()  # load .env from current working directory (project root)

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from subsync.core.config import get_settings
from subsync.core.exceptions import internal_error_handler, not_found_handler
from subsync.core.lifespan import lifespan
from subsync.core.middleware import request_logger

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

app = FastAPI(
    title="SubSync API",
    description=(
        "Subscription lifecycle engine. Reconciles PayPal and Stripe webhooks, "
        "checkout returns and admin actions into one consistent subscription state."
    ),
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
)
app.middleware("http")(request_logger)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return await not_found_handler(request, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def any_exception_handler(request: Request, exc: Exception):
    return await internal_error_handler(request, exc)


@app.get("/", tags=["Health"])
def root():
    return {
        "name": "SubSync API",
        "version": API_VERSION,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Database reachability, enabled gateways and scheduler state."""
    from subsync.core.services.scheduler_service import get_scheduler
    from subsync.database import session as db_session
    from subsync.payments import get_gateway_registry

    health = {"status": "healthy", "components": {"api": "ok"}}
    try:
        with db_session.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health["components"]["database"] = "ok"
    except Exception as e:
        health["status"] = "degraded"
        health["components"]["database"] = f"error: {e}"

    registry = get_gateway_registry()
    health["components"]["gateways"] = [n for n in registry.names() if registry.get(n).enabled]
    health["components"]["scheduler"] = "running" if get_scheduler().running else "stopped"
    return health


from subsync.api.routers import admin, checkout, webhooks  # noqa: E402

app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(checkout.router, prefix="/checkout", tags=["Checkout"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("subsync.api.main:app", host="0.0.0.0", port=8000, reload=True)
