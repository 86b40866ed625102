"""PostgreSQL store with async SQLAlchemy.

Handles:
- Engine creation from resolved config (pool sizing, driver connect args)
- Liveness check before the handle is handed out
- Session management
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging

from sqlalchemy import text
from sqlalchemy.exc import ArgumentError, InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from whatomate.errors import BackendConnectionError, InvalidConnectionURLError
from whatomate.settings import DatabaseConfig

logger = logging.getLogger(__name__)

STAGE = "database"
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds


@dataclass
class Database:
    """Verified handle to the relational store."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get database session context manager.

        Usage:
            async with db.session() as session:
                result = await session.execute(query)
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection pool."""
        await self.engine.dispose()


async def ping_db(engine: AsyncEngine) -> None:
    """Issue a trivial query over a fresh connection."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


def _create_engine(config: DatabaseConfig, *, debug: bool, timeout: float) -> AsyncEngine:
    url = config.sqlalchemy_url()
    if url.get_backend_name() != "postgresql":
        raise ArgumentError(f"Unsupported database scheme: {url.drivername}")

    return create_async_engine(
        url,
        echo=debug,
        connect_args=config.asyncpg_connect_args(timeout),
        pool_size=config.max_idle_conns,
        max_overflow=config.max_open_conns - config.max_idle_conns,
        pool_recycle=config.conn_max_lifetime or -1,
        pool_pre_ping=True,
    )


async def connect_database(
    config: DatabaseConfig,
    *,
    debug: bool = False,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> Database:
    """Create the engine and verify the database answers.

    Args:
        config: Database section of the resolved config.
        debug: Echo SQL statements. Does not affect the outcome.
        timeout: Bound for the connect and liveness check, in seconds.

    Raises:
        InvalidConnectionURLError: If the connection string cannot be parsed.
        BackendConnectionError: If the database is unreachable or rejects us.
    """
    try:
        engine = _create_engine(config, debug=debug, timeout=timeout)
    except (ArgumentError, InvalidRequestError, ValueError) as e:
        raise InvalidConnectionURLError(STAGE, "Invalid database URL", e) from e

    try:
        await asyncio.wait_for(ping_db(engine), timeout=timeout)
    except Exception as e:
        await engine.dispose()
        raise BackendConnectionError(STAGE, "Database ping failed", e) from e

    logger.info(f"Postgres connected: {engine.url}")
    return Database(
        engine=engine,
        session_factory=async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
    )
