"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .dependencies import get_registry
from .errors import register_error_handlers
from .logging_config import configure_logging
from .routers.instance import router as instance_router
from .routers.message import router as message_router
from .whatsapp.neonize_provider import NeonizeProvider
from .whatsapp.registry import SessionRegistry
from .whatsapp.relay import get_webhook_relay
from .whatsapp.supervisor import ConnectionSupervisor
from .whatsapp.types import HealthResponse

logger = structlog.get_logger()


def build_supervisor() -> ConnectionSupervisor:
    """Wire registry, relay and protocol provider from settings."""
    settings = get_settings()
    settings.sessions_dir.mkdir(parents=True, exist_ok=True)

    return ConnectionSupervisor(
        SessionRegistry(settings.sessions_dir),
        get_webhook_relay(),
        NeonizeProvider(),
        reconnect_delay=settings.reconnect_delay_seconds,
        browser=settings.browser,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    if getattr(app.state, "supervisor", None) is None:
        supervisor = build_supervisor()
        app.state.supervisor = supervisor
        app.state.registry = supervisor.registry

    logger.info(
        "Starting application",
        app_name=settings.app_name,
        env=settings.app_env,
        port=settings.port,
        webhook_url=settings.webhook_url or "Not configured",
    )

    yield

    # Shutdown
    await app.state.supervisor.shutdown()
    logger.info("Application stopped")


def create_app(supervisor: Optional[ConnectionSupervisor] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="HTTP gateway for WhatsApp Web sessions",
        version="0.1.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    if supervisor is not None:
        app.state.supervisor = supervisor
        app.state.registry = supervisor.registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(registry: SessionRegistry = Depends(get_registry)):
        """Health check endpoint."""
        return HealthResponse(sessions=len(registry), timestamp=datetime.now(timezone.utc))

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": settings.app_name,
            "version": "0.1.0",
            "status": "running",
        }

    app.include_router(instance_router)
    app.include_router(message_router)

    return app


# Application instance
app = create_app()
