"""
PostgreSQL Client
=================

Async PostgreSQL client using SQLAlchemy 2.0 with asyncpg.

The screening service only reads the regulation corpus: sessions are
opened read-only and every statement runs under a server-side timeout.

Version: 0.1.0
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)


class PostgresClient:
    """
    Async PostgreSQL client wrapper.

    Manages the connection pool for the regulation corpus.
    """

    _engine: AsyncEngine | None = None
    _session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def get_engine(cls) -> AsyncEngine:
        """Get or create the async engine."""
        if cls._engine is None:
            pg = settings.postgres
            cls._engine = create_async_engine(
                pg.async_url,
                pool_size=pg.pool_size,
                max_overflow=pg.max_overflow,
                pool_pre_ping=True,
                connect_args={
                    "server_settings": {
                        "statement_timeout": str(pg.statement_timeout_ms),
                        "default_transaction_read_only": "on",
                        "application_name": "regscreen-applicability",
                    }
                },
            )
            logger.info(
                "postgres_engine_created",
                host=pg.host,
                database=pg.db,
                corpus_table=pg.corpus_table,
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if cls._session_factory is None:
            cls._session_factory = async_sessionmaker(
                cls.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return cls._session_factory

    @classmethod
    async def close(cls) -> None:
        """Dispose of the pool."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None
            logger.info("postgres_engine_closed")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """
        Check that the corpus table is reachable.

        Returns:
            dict with status, latency and the corpus table name
        """
        table = settings.postgres.corpus_table
        try:
            start = time.perf_counter()
            async with postgres_session() as session:
                result = await session.execute(
                    text("SELECT to_regclass(:table) IS NOT NULL"), {"table": table}
                )
                corpus_present = bool(result.scalar())
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy" if corpus_present else "unhealthy",
                "latency_ms": round(latency_ms, 2),
                "corpus_table": table,
                "corpus_present": corpus_present,
            }
        except Exception as e:
            logger.error("postgres_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }


@asynccontextmanager
async def postgres_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Read-only session on the corpus database. Nothing is ever committed.

    Usage:
        async with postgres_session() as session:
            result = await session.execute(text("SELECT ..."))
    """
    async with PostgresClient.get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.rollback()
