from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eventdesk.api.error_handling import register_exception_handlers
from eventdesk.api.routes import router
from eventdesk.config import Settings
from eventdesk.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    from eventdesk.service.runtime import get_runtime

    runtime = get_runtime()
    settings = runtime.settings
    if settings.admin_email and settings.admin_password:
        status = await runtime.admin.ensure_admin(settings.admin_email, settings.admin_password)
        logger.info("admin_bootstrap", status=status)
    logger.info("app_started", version=__version__)

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="EventDesk", version=__version__, lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "API-Version"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Add a correlation ID to each request for tracing.

    The ID is taken from the X-Request-ID header if the client provided one,
    otherwise generated. It is bound for structured logging and echoed back
    in the X-Request-ID response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # API responses carry tokens and personal data
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    response.headers.setdefault("API-Version", __version__)
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Liveness probe with the configuration of external collaborators."""
    from eventdesk.service.runtime import get_runtime

    runtime = get_runtime()
    return {
        "status": "healthy",
        "checks": {
            "store": {"status": "healthy", "type": "memory"},
            "email": {"status": "configured" if runtime.email.is_configured else "dev_mode"},
            "ai": {"status": "configured", "responder": type(runtime.ai).__name__},
        },
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
