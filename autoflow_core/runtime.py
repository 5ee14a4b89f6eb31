"""
Production wiring: SQL stores plus the platform HTTP collaborators.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import structlog

from .collaborators import PlatformApiClient, build_http_collaborators
from .config import Settings
from .database import DatabaseManager, SqlAutomationStore, SqlRunStore
from .engine import AutomationEngine

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    engine: AutomationEngine
    db: DatabaseManager
    api: PlatformApiClient


@asynccontextmanager
async def engine_context(settings: Settings) -> AsyncIterator[Runtime]:
    """
    Build an engine on the configured database and platform API.

    SQLite databases get their tables created on the way in. The database
    engine and the HTTP client are closed on the way out.
    """
    db = DatabaseManager.from_settings(settings.database)
    if db.is_sqlite:
        await db.create_tables()

    api = PlatformApiClient.from_settings(
        settings.platform,
        timeout=settings.engine.collaborator_timeout_s,
    )
    engine = AutomationEngine(
        SqlAutomationStore(db),
        SqlRunStore(db),
        build_http_collaborators(api),
        settings=settings,
    )
    logger.info(
        "engine_started",
        database=db.database_url.split("://", 1)[0],
        platform=settings.platform.api_base_url,
    )

    try:
        yield Runtime(engine=engine, db=db, api=api)
    finally:
        await api.close()
        await db.close()
        logger.info("engine_stopped")
