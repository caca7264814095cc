"""FastAPI application factory for the prompt flow alignment backend."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from backend.app.alignment.router import router as alignment_router
from backend.app.config import AppConfig, load_config
from backend.app.orchestration import AlignmentOrchestrator, KeyedLockRegistry, build_orchestrator
from backend.app.storage import create_session_factory, init_schema

LOGGER = logging.getLogger(__name__)


def create_app(
    config: AppConfig | None = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    orchestrator: Optional[AlignmentOrchestrator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        config: Optional pre-loaded configuration. If omitted, the default
            configuration defined in config.yaml is used.
        session_factory: Optional session factory. When omitted the factory
            creates an engine from ``config.storage``, creates missing tables
            on startup and disposes the engine on shutdown.
        orchestrator: Optional orchestrator. When omitted one is built over the
            SQLAlchemy repositories.

    Returns:
        FastAPI: Configured FastAPI application.
    """

    resolved_config = config or load_config()
    app = FastAPI(title="Prompt Flow Alignment API", version=resolved_config.pipeline.version)
    app.state.app_config = resolved_config

    engine: Optional[AsyncEngine] = None
    if session_factory is None:
        engine, session_factory = create_session_factory(resolved_config.storage)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.orchestrator = orchestrator or build_orchestrator(
        resolved_config, session_factory, locks=KeyedLockRegistry()
    )

    if engine is not None:
        owned_engine = engine

        @app.on_event("startup")
        async def _init_alignment_schema() -> None:
            await init_schema(owned_engine)
            LOGGER.info("Alignment storage ready at %s", owned_engine.url)

        @app.on_event("shutdown")
        async def _dispose_alignment_engine() -> None:
            await owned_engine.dispose()

    allowed_origins = resolved_config.api.allowed_origins
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(alignment_router)

    @app.get("/health", tags=["system"], summary="Service health probe")
    def health() -> dict[str, str]:
        """Return service health information."""

        return {"status": "ok", "pipeline_version": resolved_config.pipeline.version}

    return app


__all__ = ["create_app"]
