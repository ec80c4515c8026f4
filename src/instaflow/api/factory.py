"""FastAPI application factory.

Two deployments share this code:
- public: platform webhook (GET verification + POST intake) and /health
- worker: everything public has, plus the authenticated queue drain
  endpoints that Cloud Tasks / the HTTP backend call
"""

from __future__ import annotations

import os
import re
import time
from typing import Literal

from fastapi import APIRouter, FastAPI, Request, Response

from instaflow.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

from .routers import public, worker
from .routes import webhooks_instagram

logger = get_logger(__name__)

AppRole = Literal["public", "worker"]

# Incoming IDs end up in logs and task headers; anything else is replaced
_SAFE_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

_ROLE_ROUTERS: dict[str, tuple[APIRouter, ...]] = {
    "public": (public.router, webhooks_instagram.router),
    "worker": (public.router, webhooks_instagram.router, worker.router),
}


def _correlation_id_for(request: Request) -> str:
    incoming = request.headers.get(CORRELATION_ID_HEADER, "")
    if _SAFE_CORRELATION_ID.match(incoming):
        return incoming
    return generate_correlation_id()


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create the app for `role` (default: APP_ROLE env var, else "public").

    Raises:
        ValueError: If the role is unknown.
    """
    role = role or os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]
    routers = _ROLE_ROUTERS.get(role)  # type: ignore[arg-type]
    if routers is None:
        raise ValueError(f"Unknown APP_ROLE: {role}")

    app = FastAPI(title="Instaflow", docs_url=None, redoc_url=None)
    app.state.role = role

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = _correlation_id_for(request)
        token = set_correlation_id(cid)
        started = time.monotonic()
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            logger.info(
                "request handled",
                extra={
                    "extra_fields": safe_log_context(
                        method=request.method,
                        path=request.url.path,
                        status=response.status_code,
                        duration_ms=int((time.monotonic() - started) * 1000),
                    )
                },
            )
            return response
        finally:
            reset_correlation_id(token)

    for router in routers:
        app.include_router(router)

    return app
