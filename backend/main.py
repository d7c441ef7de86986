"""
Problem Coach Backend - FastAPI Application Entry Point
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routers import bus, chat, config, tabs
from services.app_config import AppConfig, load_app_config
from services.container import build_services
from services.llm_service import CompletionFactory
from services.storage import KeyValueStore

logger = logging.getLogger(__name__)


def create_app(
    app_config: Optional[AppConfig] = None,
    store: Optional[KeyValueStore] = None,
    completion_factory: Optional[CompletionFactory] = None,
) -> FastAPI:
    """Build the app with its own services; tests inject store and completions"""
    app_config = app_config or load_app_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - startup and shutdown logic"""
        logger.info("[Backend] Starting Problem Coach Backend...")
        app.state.services = build_services(app_config, store=store, completion_factory=completion_factory)
        logger.info("[Backend] Services initialized (store=%s)", app_config.store)

        yield

        logger.info("[Backend] Shutting down Problem Coach Backend...")
        await app.state.services.sessions.shutdown()

    app = FastAPI(
        title="Problem Coach Backend",
        description="Streaming coaching sessions and per-tab problem state for the in-page assistant",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware for the in-page panel and tab observers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(bus.router, prefix="/api/bus", tags=["bus"])
    app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
    app.include_router(chat.ws_router, tags=["chat"])
    app.include_router(tabs.router, tags=["tabs"])
    app.include_router(config.router, prefix="/api/config", tags=["config"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        services = getattr(app.state, "services", None)
        return {
            "status": "healthy",
            "service": "problem-coach-backend",
            "liveSessions": len(services.registry) if services else 0,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    app_config = load_app_config()
    logging.basicConfig(
        level=app_config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(app_config), host=app_config.host, port=app_config.port)
