"""Async engine and schema helpers for the flow alignment store."""
from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.app.config import StorageConfig
from backend.app.storage.models import FlowBase
from backend.app.storage.repository import StorageError

LOGGER = logging.getLogger(__name__)


def create_session_factory(
    config: StorageConfig,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the async engine and session factory described by ``config``."""

    options: Dict[str, Any] = {"echo": config.echo, "future": True}
    if config.database_url.startswith("sqlite") and ":memory:" in config.database_url:
        # every session must see the same in-memory database
        options["poolclass"] = StaticPool
    engine = create_async_engine(config.database_url, **options)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return engine, session_factory


async def init_schema(engine: AsyncEngine) -> None:
    """Create any missing flow alignment tables, raising StorageError on failure."""

    try:
        async with engine.begin() as connection:
            await connection.run_sync(FlowBase.metadata.create_all)
    except SQLAlchemyError as exc:
        LOGGER.error("Failed to initialize flow alignment schema: %s", exc)
        raise StorageError(f"Failed to initialize flow alignment schema: {exc}") from exc
    LOGGER.debug("Flow alignment schema ensured for %s", engine.url)


__all__ = ["create_session_factory", "init_schema"]
