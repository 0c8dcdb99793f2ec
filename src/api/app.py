"""
FastAPI Application Factory.

Usage:
    # Development
    uvicorn api.app:create_app --factory --reload

    # Production
    uvicorn api.app:app --host 0.0.0.0 --port 8080 --workers 4

    # Or use the convenience function
    from api.app import create_app
    app = create_app()
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import Settings, get_settings
from core.errors import InputError
from core.logging import configure_logging, get_logger
from core.middleware import RequestTracingMiddleware
from core.rate_limit import RateLimitMiddleware
from gifts.engine import GiftDeckService


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup configures logging and initializes the service container;
    shutdown releases it.
    """
    settings = get_settings()

    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    logger.info(
        "Starting gift deck API",
        environment=settings.environment,
        port=settings.port,
    )

    service: GiftDeckService = app.state.service
    service.init()

    yield

    service.shutdown()
    logger.info("Shutting down gift deck API")


async def input_error_handler(request: Request, exc: InputError) -> JSONResponse:
    logger.info(
        "Rejected request",
        path=request.url.path,
        error=exc.kind,
        detail=exc.message,
    )
    return JSONResponse(status_code=400, content=exc.to_dict())


def create_app(
    service: Optional[GiftDeckService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Pre-built service container (tests inject one with
            in-memory collaborators). Built from settings when omitted.
        settings: Settings override; defaults to get_settings().

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Gift Deck API",
        description="""
        Swipeable gift recommendations.

        ## Main Endpoints

        - `POST /api/recommend` - First page for a new or seeded session
        - `POST /api/recommend-more` - Next page, never repeating an item
        - `POST /api/swipe` - Record LEFT / RIGHT / SAVED feedback

        Recommend endpoints are rate limited per client IP (429 + Retry-After).

        ## Health Checks

        - `/health` - Basic health check
        - `/health/detailed` - Detailed health with dependency status
        - `/ready` - Kubernetes readiness probe
        - `/live` - Kubernetes liveness probe
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.service = service or GiftDeckService(settings)

    # =========================================================================
    # Middleware (order matters - last added = outermost)
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Per-IP limit on the recommend endpoints
    if settings.rate_limit_enabled:
        app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.rate_limit_per_minute)

    # Request tracing (adds X-Request-ID, logs timing)
    app.add_middleware(RequestTracingMiddleware)

    app.add_exception_handler(InputError, input_error_handler)

    # =========================================================================
    # Routes
    # =========================================================================

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.recommend import router as recommend_router
    app.include_router(recommend_router)

    return app


# Create default app instance for uvicorn
# Usage: uvicorn api.app:app
app = create_app()


def get_app() -> FastAPI:
    """Get the application instance (for ASGI servers)."""
    return app
