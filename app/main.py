"""
Condo Compliance - FastAPI Application
Infraction case lifecycle for condominium management.

Managers register cases against residents, the messaging service reports
deliveries back, residents answer within their defense window and managers
close each case with a decision.
"""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.database import close_db, init_db
from app.core.errors import setup_exception_handlers
from app.core.event_bus import event_bus
from app.routers import cases, decisions, defenses, health, notifications, subscriptions
from app.services.notification_dispatch import register_dispatch_handlers, unregister_dispatch_handlers


# =============================================================================
# Logging Setup
# =============================================================================

def setup_logging():
    """Configure root logging from settings.log_level."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # SQL echo is controlled by DEBUG, keep the engine quiet otherwise
    if not settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# =============================================================================
# Lifespan (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, wire the dispatcher; dispose the engine on shutdown."""
    settings = get_settings()
    logger = logging.getLogger(__name__)

    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    await init_db()
    register_dispatch_handlers()
    if not settings.dispatch_webhook_url:
        logger.info("DISPATCH_WEBHOOK_URL not set: notification hand-offs will only be logged")

    yield

    await event_bus.drain()
    unregister_dispatch_handlers()
    await close_db()
    logger.info("%s stopped", settings.app_name)


# =============================================================================
# Application Factory
# =============================================================================

def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures the FastAPI application.
    """
    settings = get_settings()
    setup_logging()

    # OpenAPI tags for documentation organization
    tags_metadata = [
        {"name": "Health", "description": "Liveness check."},
        {"name": "Cases", "description": "Case registration, reads, evidence and timeline."},
        {"name": "Defenses", "description": "Resident defenses and the review queue."},
        {"name": "Decisions", "description": "Rulings that close a case."},
        {"name": "Notifications", "description": "Sends and delivery callbacks."},
        {"name": "Subscriptions", "description": "Plan limits and usage."},
    ]

    app = FastAPI(
        title=settings.app_name,
        description=settings.app_description,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        docs_url="/docs" if settings.enable_docs else None,
        redoc_url="/redoc" if settings.enable_docs else None,
        lifespan=lifespan,
    )

    # =========================================================================
    # Middleware
    # =========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    # =========================================================================
    # Exception Handlers
    # =========================================================================
    setup_exception_handlers(app)

    # =========================================================================
    # Register Routers
    # =========================================================================
    app.include_router(health.router)
    app.include_router(cases.router)
    app.include_router(defenses.router)
    app.include_router(decisions.router)
    app.include_router(notifications.router)
    app.include_router(subscriptions.router)

    return app


# Create the app instance
app = create_app()


# =============================================================================
# Development Server
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
