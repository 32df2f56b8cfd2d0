import logging
import time
from uuid import uuid4

from fastapi import Request

logger = logging.getLogger(__name__)

# Polled by load balancers; logged at DEBUG only
QUIET_PATHS = ("/", "/health")


async def request_logger(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex[:12]
    path = request.url.path
    level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
    start = time.perf_counter()
    logger.log(level, f"[{request_id}] → {request.method} {path}")

    response = await call_next(request)

    elapsed = time.perf_counter() - start
    logger.log(
        level if response.status_code < 500 else logging.ERROR,
        f"[{request_id}] ← {request.method} {path} [{response.status_code}] ({elapsed:.3f}s)",
    )

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    return response
