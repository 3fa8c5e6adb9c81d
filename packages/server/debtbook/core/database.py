"""
Database connection and session management.

The process entry point owns the engine: ``create_app`` builds a
``Database`` and stores it on ``app.state``; request handlers receive an
``AsyncSession`` through ``get_session`` and pass it explicitly to services.
Mutating routes call ``commit`` before they return, so a failed commit is
reported to the client rather than after the response has gone out.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Request
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from debtbook.core.config import Settings
from debtbook.core.errors import ConflictError, TransientError


class Database:
    """Engine plus session factory for one process."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls.from_url(settings.database_url, echo=settings.debug)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> "Database":
        kwargs: dict = {"echo": echo, "future": True}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every session sees an empty db.
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        return cls(create_async_engine(url, **kwargs))

    async def create_all(self) -> None:
        """Create all tables (development and tests)."""
        import debtbook.models  # noqa: F401  (populate metadata)

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """One unit of work: commit on success, roll back on any error."""
        async with self.session_factory() as session:
            try:
                yield session
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("A conflicting record already exists") from exc
            except (OperationalError, InterfaceError) as exc:
                await session.rollback()
                raise TransientError("The data store is temporarily unavailable") from exc
            except Exception:
                await session.rollback()
                raise
            await commit(session)


async def commit(session: AsyncSession) -> None:
    """Commit the unit of work, mapping store failures to API errors.

    Routes call this before returning so a failed commit becomes the
    response instead of surfacing after the response has been sent.
    """
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("A conflicting record already exists") from exc
    except (OperationalError, InterfaceError) as exc:
        await session.rollback()
        raise TransientError("The data store is temporarily unavailable") from exc


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    db: Database = request.app.state.db
    async with db.session() as session:
        yield session


def dialect_insert(session: AsyncSession, model):
    """Dialect-specific INSERT construct that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert is not supported on '{dialect}'")
