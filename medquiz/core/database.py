from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Optional, TypeVar
import asyncio
import logging

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from medquiz.core.config import Settings
from medquiz.core.errors import ContentError, DuplicateIdentifierError, TransactionAbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database:
    """Record store handle: one async engine plus its session factory."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        self.url = url
        self.engine = create_async_engine(url, echo=echo, pool_pre_ping=True, **engine_kwargs)
        self.sessions = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        kwargs = {}
        if not settings.is_sqlite():
            kwargs.update(
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            )
        return cls(settings.DATABASE_URL, echo=settings.DATABASE_ECHO, **kwargs)

    async def create_all(self) -> None:
        """Create tables if they don't exist."""
        from medquiz.models.orm import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read-only session; nothing is committed."""
        async with self.sessions() as session:
            yield session

    @asynccontextmanager
    async def transaction(
        self,
        operation: str,
        kind: Optional[str] = None,
        identifier: Optional[str] = None,
        target: Optional[str] = None,
    ) -> AsyncIterator[AsyncSession]:
        """
        One unit of work. Commits when the block exits cleanly, rolls back otherwise.

        Content errors pass through untouched. A unique-key collision on
        ``external_id`` (a concurrent writer claimed ``target`` first) surfaces as
        DuplicateIdentifierError; other store failures surface as
        TransactionAbortedError after the rollback has completed.
        """
        try:
            async with self.sessions() as session:
                async with session.begin():
                    yield session
        except ContentError:
            raise
        except IntegrityError as exc:
            if kind and is_external_id_collision(exc):
                logger.warning(f"{operation} on {kind} {identifier} lost a race for {target or identifier}")
                raise DuplicateIdentifierError(kind, target or identifier) from exc
            logger.error(f"{operation} on {kind} {identifier} rolled back: {exc}")
            raise TransactionAbortedError(operation, kind=kind, identifier=identifier) from exc
        except SQLAlchemyError as exc:
            logger.error(f"{operation} on {kind} {identifier} rolled back: {exc}")
            raise TransactionAbortedError(operation, kind=kind, identifier=identifier) from exc


def is_external_id_collision(exc: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed: years.external_id"
    # postgres: duplicate key value violates unique constraint "ix_years_external_id"
    message = str(exc.orig).lower()
    return "external_id" in message and ("unique" in message or "duplicate" in message)


async def run_atomic(coro: Awaitable[T]) -> T:
    """
    Run a unit of work so that cancelling the caller cannot interrupt it.

    The transaction still resolves to a full commit or a full rollback even if
    the client that started it goes away.
    """
    return await asyncio.shield(asyncio.ensure_future(coro))


def get_database(request: Request) -> Database:
    """Dependency returning the store handle attached to the application."""
    return request.app.state.db
