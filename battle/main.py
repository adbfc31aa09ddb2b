"""
main.py — FastAPI Application Factory
======================================
MeetCode Battle Server

Hosts the battle-mode WebSocket and the in-memory lobby coordinator.

Usage:
    # Development mode (hot-reload)
    uvicorn battle.main:app --reload --port 4000

    # Or directly
    python -m battle.main
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from battle.apps.lobby.registry import LobbyRegistry
from battle.apps.ws.dispatch import MessageRouter
from battle.apps.ws.service import fanout
from battle.core.config import Settings, get_settings
from battle.core.errors import register_error_handlers
from battle.services.backend_client import BackendGateway, GraphQLBackendGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle manager.
    """
    # ═══════════════════════════════════════════════════
    # STARTUP
    # ═══════════════════════════════════════════════════
    settings: Settings = app.state.settings
    logging.getLogger("battle").setLevel(settings.LOG_LEVEL.upper())
    logger.info(f"🚀 Starting {settings.APP_NAME} v{settings.VERSION}")
    logger.info(f"📍 Environment: {settings.ENV}")
    logger.info(f"🌐 Backend: {settings.BACKEND_URL}")

    yield

    # ═══════════════════════════════════════════════════
    # SHUTDOWN
    # ═══════════════════════════════════════════════════
    registry: LobbyRegistry = app.state.registry
    logger.info(f"👋 Shutting down, disposing {len(registry)} lobby(ies)")
    registry.shutdown()


def create_app(
    settings: Settings | None = None,
    gateway: BackendGateway | None = None,
) -> FastAPI:
    """
    FastAPI application factory.

    Args:
        settings: Overrides the environment-derived settings (tests)
        gateway: Overrides the GraphQL backend gateway (tests)

    Returns:
        FastAPI: Configured instance with registry and message router on app.state
    """
    settings = settings or get_settings()
    gateway = gateway or GraphQLBackendGateway(
        settings.BACKEND_URL,
        timeout=settings.BACKEND_TIMEOUT_SECONDS,
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Real-time coordinator for multi-participant coding battles",
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    registry = LobbyRegistry(gateway, fanout=fanout, settings=settings)
    app.state.settings = settings
    app.state.registry = registry
    app.state.message_router = MessageRouter(registry)

    # ═══════════════════════════════════════════════════
    # CORS Middleware
    # ═══════════════════════════════════════════════════
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_CREDENTIALS,
        allow_methods=settings.CORS_METHODS,
        allow_headers=settings.CORS_HEADERS,
    )

    register_error_handlers(app)

    # ═══════════════════════════════════════════════════
    # System Endpoints
    # ═══════════════════════════════════════════════════
    @app.get("/health", tags=["system"])
    def health_check():
        return {
            "status": "ok",
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "environment": settings.ENV,
            "lobbies": len(registry),
        }

    @app.get("/", tags=["system"])
    def root():
        return {
            "message": settings.APP_NAME,
            "version": settings.VERSION,
            "docs": "/docs" if settings.DEBUG else "disabled",
        }

    # ═══════════════════════════════════════════════════
    # Routers
    # ═══════════════════════════════════════════════════
    from battle.apps.lobby.router import router as lobby_router
    from battle.apps.ws.router import router as ws_router

    app.include_router(lobby_router)
    app.include_router(ws_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "battle.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
