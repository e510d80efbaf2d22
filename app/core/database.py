"""Async SQLAlchemy engine and the short-lived sessions used by the run stores."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import InterfaceError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str | None = None) -> AsyncEngine:
    return create_async_engine(
        url or settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
        pool_pre_ping=True,
        # Runs can sit idle for minutes while an LLM stage is planning.
        pool_recycle=300,
    )


engine = build_engine()

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def _has_pending_state(session: AsyncSession) -> bool:
    return bool(session.new or session.dirty or session.deleted)


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception as exc:
        logger.warning("Rollback failed, connection likely closed", extra={"error": repr(exc)})


@asynccontextmanager
async def get_session_context(
    *,
    commit_on_exit: bool = True,
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session scoped to one store operation.

    No session outlives a single read or conditional write, so a run never
    holds a connection while a stage is waiting on DataForSEO or the LLM.
    With ``commit_on_exit=False`` the block must be read-only.
    """
    async with async_session_maker() as session:
        try:
            yield session
            if commit_on_exit:
                await session.commit()
            elif _has_pending_state(session):
                raise RuntimeError(
                    "Session has pending ORM changes but commit_on_exit=False; "
                    "use commit_on_exit=True for writes."
                )
        except InterfaceError:
            if not session.in_transaction() and not _has_pending_state(session):
                logger.debug("Connection closed after work finished, ignoring")
                return
            logger.warning("Database interface error inside a transaction, rolling back")
            await _rollback_quietly(session)
            raise
        except Exception as exc:
            logger.warning("Database session error, rolling back", extra={"error": repr(exc)})
            await _rollback_quietly(session)
            raise


async def init_db() -> None:
    """Create the pipeline tables if they do not exist."""
    from app.models import Base

    logger.info("Initializing database tables", extra={"tables": sorted(Base.metadata.tables)})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    logger.info("Closing database connections")
    await engine.dispose()
