"""
Main FastAPI application.

WHY: This is the entry point for the application. It configures logging,
middleware, routes, exception handlers, and shutdown of background
notification work.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from helpdesk.core.config import settings
from helpdesk.core.exceptions import AppException
from helpdesk.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from helpdesk.middleware import RequestContextMiddleware, install_request_id_logging
from helpdesk.api import tickets, blobs
from helpdesk.services.notification_dispatcher import get_dispatcher


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows easier testing with different configurations.

    Returns:
        Configured FastAPI application instance
    """
    logging.getLogger("helpdesk").setLevel(settings.LOG_LEVEL.upper())
    install_request_id_logging("helpdesk")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Support ticket lifecycle and access control API",
        version=settings.VERSION,
        docs_url=f"{settings.API_PREFIX}/docs",
        redoc_url=f"{settings.API_PREFIX}/redoc",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
    )

    # Register exception handlers
    # WHY: Consistent error bodies, and no internals in error messages
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Request id, client IP and user agent for every log line of a request
    app.add_middleware(RequestContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Lets load balancers verify the service without authentication
        or database access.
        """
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "pending_notifications": get_dispatcher().pending,
        }

    @app.on_event("shutdown")
    async def shutdown_event():
        """
        Application shutdown event handler.

        WHY: Notifications are dispatched in background tasks after their
        mutation committed; waiting for them avoids dropping e-mails on
        restart.
        """
        results = await get_dispatcher().drain()
        if results:
            logger.info(f"Drained {len(results)} pending notification dispatches")

    # Register API routers
    app.include_router(tickets.router, prefix=settings.API_PREFIX)
    app.include_router(blobs.router, prefix=settings.API_PREFIX)

    return app


# Create app instance
# WHY: Allows `uvicorn helpdesk.main:app`
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
