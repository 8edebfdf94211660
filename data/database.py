from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from data.schema import Base


class Database:
    """Owns the async engine and session factory for one database URL."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine = create_async_engine(url, echo=False)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    @property
    def sqlite_path(self) -> Path | None:
        parsed = make_url(self.url)
        if not parsed.drivername.startswith("sqlite") or not parsed.database:
            return None
        if parsed.database == ":memory:":
            return None
        return Path(parsed.database)

    async def init(self) -> None:
        """Create all tables (idempotent)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            if self.sqlite_path is not None:
                # Enable WAL mode for better concurrent read/write performance
                await conn.execute(text("PRAGMA journal_mode=WAL"))

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
