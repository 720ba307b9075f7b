"""
buildwatch Core - Lifecycle context.

The LifecycleContext holds the infrastructure every build lifecycle needs:
configuration, CI client, event bus and the record repository. It is built
once at startup and passed explicitly; nothing in the engine reaches for a
global.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from buildwatch.ci.client import JenkinsClient
from buildwatch.config import Config, get_config
from buildwatch.events.bus import EventBus
from buildwatch.persistence import BuildRecordRepository, Database
from buildwatch.utils.security import register_secret

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class LifecycleContext:
    """
    Dependencies shared by all build lifecycles.

    Usage:
        ctx = await LifecycleContext.create(config)
        try:
            tracker = BuildTracker(ctx)
            ...
        finally:
            await ctx.close()
    """

    config: Config
    client: JenkinsClient
    bus: EventBus
    _db: Database | None = field(default=None, repr=False)
    _repository: BuildRecordRepository | None = field(default=None, repr=False)

    @property
    def db(self) -> Database:
        """Get database connection."""
        if self._db is None:
            raise RuntimeError("Database not initialized. Use LifecycleContext.create().")
        return self._db

    @property
    def repository(self) -> BuildRecordRepository:
        """Get build record repository."""
        if self._repository is None:
            raise RuntimeError("Database not initialized. Use LifecycleContext.create().")
        return self._repository

    @classmethod
    async def create(
        cls,
        config: Config | None = None,
        *,
        client: JenkinsClient | None = None,
        db_path: Path | None = None,
    ) -> LifecycleContext:
        """
        Create a context with an open database.

        Args:
            config: Configuration (default: get_config())
            client: CI client override (default: built from config.jenkins)
            db_path: Database file override (default: config.storage.db_path)

        Returns:
            Initialized LifecycleContext
        """
        cfg = config or get_config()
        if cfg.jenkins.token is not None:
            register_secret(cfg.jenkins.token.get_secret_value())

        db = Database(db_path or cfg.storage.db_path)
        await db.connect()
        repository = BuildRecordRepository(db)

        ctx = cls(
            config=cfg,
            client=client or JenkinsClient(cfg.jenkins),
            bus=EventBus(sink=repository, queue_size=cfg.events.subscriber_queue_size),
            _db=db,
            _repository=repository,
        )
        logger.debug(f"✅ LifecycleContext ready (CI server: {cfg.jenkins.url})")
        return ctx

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            self._repository = None
        logger.debug("✅ LifecycleContext closed")
