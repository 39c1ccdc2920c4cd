"""
Database repository layer for the Discord AI Bot.

DatabaseManager owns the async engine and exposes the prompt storage used
by the response orchestrator along with the admin audit log.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from discord_ai_bot.config import DatabaseConfig
from discord_ai_bot.database.models import AdminAction, Base, UserPrompt
from discord_ai_bot.utils.exceptions import DatabaseError
from discord_ai_bot.utils.logging import get_logger, log_function_call


def to_async_url(url: str) -> str:
    """Swap a sync driver URL for its async equivalent."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


class DatabaseManager:
    """
    Database manager providing high-level database operations.

    Attributes:
        config: Database configuration
        engine: SQLAlchemy async engine
        session_factory: Async session factory
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)
        self.engine = None
        self.session_factory = None
        self._closed = False

        log_function_call("DatabaseManager.__init__", database_url=config.url)

    async def initialize(self) -> None:
        """
        Connect and create tables if they don't exist.

        Connection failures are retried a few times with backoff, since the
        database may still be starting alongside the bot.

        Raises:
            DatabaseError: If database initialization fails
        """
        if self._closed:
            raise DatabaseError("Database manager has been closed")

        try:
            self.logger.info("Initializing database connection")

            self.engine = create_async_engine(
                to_async_url(self.config.url),
                echo=self.config.echo,
                pool_pre_ping=True,
            )
            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            await self._create_tables()

            self.logger.info("Database initialization completed")

        except Exception as e:
            self.logger.error("Failed to initialize database", error=str(e))
            raise DatabaseError(
                "Failed to initialize database",
                context={"database_url": self.config.url},
                original_error=e,
            )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    async def _create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Get a database session with automatic cleanup.

        Example:
            ```python
            async with db_manager.get_session() as session:
                prompt = await session.get(UserPrompt, prompt_id)
                await session.commit()
            ```
        """
        if not self.session_factory:
            raise DatabaseError("Database not initialized")

        session = self.session_factory()
        try:
            yield session
        except Exception as e:
            await session.rollback()
            self.logger.error("Database session error", error=str(e))
            raise
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            async with self.get_session() as session:
                await session.execute(select(1))
            return True
        except Exception as e:
            self.logger.warning("Database health check failed", error=str(e))
            return False

    # Custom prompts

    async def _find_prompt(self, session: AsyncSession, user_id: str) -> Optional[UserPrompt]:
        result = await session.execute(select(UserPrompt).where(UserPrompt.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_user_prompt_record(self, user_id: str) -> Optional[UserPrompt]:
        try:
            async with self.get_session() as session:
                return await self._find_prompt(session, user_id)
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to load user prompt",
                context={"user_id": user_id},
                original_error=e,
            )

    async def get_user_prompt(self, user_id: str) -> Optional[str]:
        """
        Get ``user_id``'s custom system prompt.

        Returns:
            The prompt text, or None if the user has not set one

        Raises:
            DatabaseError: If the lookup fails
        """
        record = await self.get_user_prompt_record(user_id)
        return record.custom_prompt if record else None

    async def set_user_prompt(self, user_id: str, prompt: str) -> UserPrompt:
        """
        Create or replace ``user_id``'s custom system prompt.

        Returns:
            The stored record
        """
        log_function_call("set_user_prompt", user_id=user_id, prompt_length=len(prompt))

        try:
            async with self.get_session() as session:
                record = await self._find_prompt(session, user_id)
                if record:
                    record.custom_prompt = prompt
                else:
                    record = UserPrompt(user_id=user_id, custom_prompt=prompt)
                    session.add(record)
                await session.commit()
                await session.refresh(record)
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to save user prompt",
                context={"user_id": user_id},
                original_error=e,
            )

        self.logger.info("Saved custom prompt", user_id=user_id, prompt_length=len(prompt))
        return record

    async def delete_user_prompt(self, user_id: str) -> bool:
        """Remove ``user_id``'s custom prompt. Returns whether one existed."""
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    delete(UserPrompt).where(UserPrompt.user_id == user_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to delete user prompt",
                context={"user_id": user_id},
                original_error=e,
            )

        deleted = result.rowcount > 0
        if deleted:
            self.logger.info("Deleted custom prompt", user_id=user_id)
        return deleted

    # Admin audit log

    async def record_admin_action(
        self,
        action: str,
        admin_id: str,
        target: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AdminAction:
        try:
            async with self.get_session() as session:
                record = AdminAction(
                    action=action,
                    admin_id=admin_id,
                    target=target,
                    details=details,
                )
                session.add(record)
                await session.commit()
                await session.refresh(record)
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to record admin action",
                context={"action": action, "admin_id": admin_id},
                original_error=e,
            )
        return record

    async def get_admin_actions(self, limit: int = 50) -> List[AdminAction]:
        """Most recent admin actions first."""
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    select(AdminAction)
                    .order_by(AdminAction.created_at.desc(), AdminAction.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to load admin actions", original_error=e)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if not self._closed:
            if self.engine:
                await self.engine.dispose()
            self._closed = True
            self.logger.debug("Database manager closed")
