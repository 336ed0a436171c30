"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import APIRouter

from src.config.settings import get_settings
from src.shared.errors import (
    AttemptLimitError,
    ConfigurationError,
    NotFoundError,
    ProviderError,
)

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[Exception], int] = {
    ConfigurationError: 400,
    NotFoundError: 404,
    AttemptLimitError: 409,
    ProviderError: 502,
}


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    Starts the in-process follow-up scheduler on startup when enabled
    and stops it cleanly on shutdown.

    Args:
        app: FastAPI application instance.

    Yields:
        Control to the running application.
    """
    from src.workers.scheduler import (
        start_followup_scheduler,
        stop_followup_scheduler,
    )

    enabled = get_settings().followup_scheduler_enabled
    if enabled:
        await start_followup_scheduler()
    yield
    if enabled:
        await stop_followup_scheduler()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(
        title="Clinic Follow-up",
        description="Patient follow-up orchestration over voice calls and WhatsApp",
        version="0.1.0",
        lifespan=_lifespan,
    )

    settings = get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)

    app.include_router(_health_router())

    from src.api.followups import router as followups_router
    from src.api.webhooks import router as webhooks_router
    from src.api.worker_routes import router as worker_router

    app.include_router(webhooks_router)
    app.include_router(followups_router)
    app.include_router(worker_router)

    return app


def _register_error_handlers(app: FastAPI) -> None:
    """Map domain errors to ``{"success": false, "error": ...}`` responses.

    Args:
        app: FastAPI application instance.
    """

    async def _domain_error(request: Request, exc: Exception) -> JSONResponse:
        status_code = _ERROR_STATUS[type(exc)]
        logger.warning(
            "request_failed",
            extra={
                "path": request.url.path,
                "error_type": type(exc).__name__,
                "status_code": status_code,
            },
        )
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "error": str(exc)},
        )

    async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=exc.headers,
        )

    for error_type in _ERROR_STATUS:
        app.add_exception_handler(error_type, _domain_error)
    app.add_exception_handler(HTTPException, _http_error)


def _health_router() -> APIRouter:
    """Create health check router.

    Returns:
        Router with health endpoints.
    """
    from fastapi import APIRouter

    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Return application health status.

        Returns:
            Dict with status key.
        """
        return {"status": "ok"}

    return router


app = create_app()
