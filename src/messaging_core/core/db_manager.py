from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging
import os

from messaging_core.config import Config
from .database import Base


class DatabaseManager:
    """
    Owns the async engine and hands out sessions.

    Every ``session()`` block is one transaction: it commits when the block exits
    normally and rolls back when it raises.
    """

    def __init__(self, config: Config, logger: logging.Logger | None = None):
        self.config = config
        self.engine = None
        self.session_factory = None
        self._logger = logger or logging.getLogger(__name__)

    async def initialize(self):
        url = self.config.db.url
        if self.config.db.host:
            self.engine = create_async_engine(
                url=url,
                pool_size=30,
                max_overflow=20,
                pool_pre_ping=True,
                pool_timeout=60,
                pool_recycle=-1,
                echo=False,
            )
        else:
            directory = os.path.dirname(self.config.db.path or "")
            if directory:
                os.makedirs(directory, exist_ok=True)
            self.engine = create_async_engine(url=url, echo=False)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._logger.info("Database engine initialized (%s)", self.engine.dialect.name)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        if not self.engine:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self):
        if not self.engine:
            await self.initialize()

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        if self.engine:
            await self.engine.dispose()
            self.engine = None
