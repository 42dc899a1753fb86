"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

For local development:
    BLOB_MOCK_MODE=true uvicorn src.main:app --reload

For production:
    gunicorn src.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.responses import CORS_HEADERS
from .api.routes import handle
from .config.settings import Settings, get_settings

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


def _request_settings(request: Request) -> Settings:
    """Settings for a request, honouring dependency overrides like the routes do."""
    provider = request.app.dependency_overrides.get(get_settings, get_settings)
    return provider()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Logs startup configuration and reports missing storage settings.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info(
        "Media Blob API starting",
        extra={
            "version": settings.api_version,
            "environment": settings.environment,
            "mock_mode": settings.blob_mock_mode,
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        # Requests that need the store will fail with a 500 envelope
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    yield

    logger.info("Media Blob API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Object storage for images, videos, CC filters and enhanced images.

        Every operation goes through one endpoint, selected with `?action=`:
        `upload`, `cc`, `save-enhanced`, `list-uploads`, `delete-upload`,
        `get-metadata`, `health`.

        Responses are always JSON envelopes: `{"success": true, ...}` or
        `{"success": false, "error": "..."}`.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.include_router(
        handle.router,
        prefix="/api/handle",
        tags=["Actions"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - points at docs and the action endpoint."""
        return {
            "message": settings.api_title,
            "version": settings.api_version,
            "docs": "/docs",
            "endpoint": "/api/handle",
        }

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Envelope errors Starlette raises before a route runs.

        Covers methods the action route does not accept and unknown paths,
        so these responses still carry the CORS headers.
        """
        if exc.status_code == 405:
            error = "Method not allowed"
        else:
            error = str(exc.detail)

        headers = {**(exc.headers or {}), **CORS_HEADERS}
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": error},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        The action router already converts handler failures into envelopes;
        this covers failures outside it, such as building the blob store
        from invalid configuration.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        content = {"success": False, "error": str(exc) or "Internal server error"}
        if _request_settings(request).include_stack_traces:
            content["stack"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )

        return JSONResponse(status_code=500, content=content, headers=CORS_HEADERS)

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
