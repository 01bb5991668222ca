"""Async SQLAlchemy engine and session factory, owned by a Database handle.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

The engine lives inside an explicitly constructed `Database` object with an
open()/close() lifecycle. The app lifespan owns one instance and parks it on
`app.state.database`; nothing imports a module-level engine, so tests can
build as many isolated databases as they like.
"""

from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from postpilot.db.models import Base


class Database:
    """Handle for one database: engine + session factory."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open. Call open() first.")
        return self._engine

    async def open(self) -> None:
        if self._engine is not None:
            return
        kwargs = {}
        # SQLite (tests, local dev) does not take pool sizing arguments.
        if not self.url.startswith("sqlite"):
            kwargs.update(pool_size=5, max_overflow=15, pool_pre_ping=True)
        self._engine = create_async_engine(self.url, echo=self.echo, **kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def session(self) -> AsyncSession:
        if self._session_factory is None:
            raise RuntimeError("Database is not open. Call open() first.")
        return self._session_factory()

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def create_all(self) -> None:
        """Create every table. Used by `postpilot init-db` and tests."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency — yields a session per request, auto-closes."""
    database: Database = request.app.state.database
    async with database.session() as session:
        try:
            yield session
        finally:
            await session.close()
