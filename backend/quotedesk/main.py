"""
FastAPI application entry point.
Assembles the app with routers, middleware, lifespan handlers, and exception handlers.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from quotedesk.api.v1.router import api_router
from quotedesk.core.config import settings
from quotedesk.core.exceptions import setup_exception_handlers
from quotedesk.core.logging import setup_logging
from quotedesk.core.rate_limit import limiter
from quotedesk.db.session import init_db, close_db
from quotedesk.deps.di_container import get_container, shutdown_container
from quotedesk.jobs.scheduler import QuotationScheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    Initializes DB and starts the background scheduler.
    """
    # Startup
    setup_logging()
    await init_db(create_schema=settings.DATABASE_CREATE_SCHEMA)

    container = app.state.container
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = QuotationScheduler(notifier=container.notifier(), clock=container.clock())
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    # Shutdown
    if scheduler is not None:
        await scheduler.stop()
    await shutdown_container()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Quotation delivery, client portal and discount approval API",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    container = get_container()
    container.config.from_dict({
        "database_url": settings.DATABASE_URL,
        "portal_base_url": settings.PORTAL_BASE_URL,
    })
    app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting for the public passcode endpoints
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    from quotedesk.api.v1.endpoints.health import get_health

    @app.get("/health", response_model=None, include_in_schema=False)
    async def root_health(request: Request):
        """Root-level health check endpoint."""
        return await get_health(request)

    setup_exception_handlers(app)

    return app


app = create_app()
