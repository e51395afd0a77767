"""
Database module for storyreel.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging

from storyreel.db.engine import async_session, engine, get_session, shutdown
from storyreel.db.models import (
    Base,
    Image,
    Material,
    Project,
    Scene,
    Video,
    VideoChain,
    VideoChainItem,
)

logger = logging.getLogger(__name__)


async def init_database(target_engine=None):
    """Initialize database schema on first run."""
    async with (target_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


__all__ = [
    "Base",
    "engine",
    "async_session",
    "get_session",
    "shutdown",
    "init_database",
    "Project",
    "Scene",
    "Image",
    "Video",
    "Material",
    "VideoChain",
    "VideoChainItem",
]
