"""FastAPI application factory for the SiteKeeper health API.

Usage::

    from sitekeeper.api.app import create_app

    app = create_app(controller=controller, config=config)

The factory is used by both the production bootstrap (``sitekeeper.app``)
and unit tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sitekeeper.api.routes import router
from sitekeeper.api.schemas import ErrorResponse

_log = structlog.get_logger(component="api.app")


def create_app(controller: Any, config: Any = None) -> FastAPI:
    """Create and configure the health API.

    Args:
        controller: Controller instance (``status()`` and ``cache`` are used).
        config:     SiteKeeperConfig.  Used for the watched-target label.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from sitekeeper import __version__

    target = ""
    if config is not None and hasattr(config, "target"):
        target = str(config.target)

    app = FastAPI(
        title="SiteKeeper",
        summary="Website controller health and metrics",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )

    app.state.controller = controller
    app.state.target = target

    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
