"""Async engine and session lifecycle for the reservation store."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from carbooking.config.settings import Settings
from carbooking.logging import get_logger
from carbooking.storage.db_models import NO_OVERLAP_DDL, Base

logger = get_logger(__name__)


class Database:
    """Owns the engine; hands out one transaction per `session()` block."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._engine

    async def connect(self) -> None:
        if self._engine is not None:
            return

        self._engine = create_async_engine(
            self.settings.database_url,
            echo=self.settings.log_level == "DEBUG",
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
        )
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

        url = make_url(self.settings.database_url).render_as_string(hide_password=True)
        logger.info("database_connected", url=url)

    async def disconnect(self) -> None:
        if self._engine is None:
            return

        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("database_disconnected")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Commit when the block exits cleanly, roll back otherwise."""
        if self._session_factory is None:
            raise RuntimeError("Database not connected. Call connect() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Schema plus the no-overlap exclusion constraint, for tests and local runs."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            for statement in NO_OVERLAP_DDL:
                await conn.execute(text(statement))
        logger.info("database_tables_created")

    async def drop_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("database_tables_dropped")
