from typing import Optional, List, Any, Dict
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from contextlib import asynccontextmanager

from league.config import Config
from league.database.models import Base, Player, Deck, ActivityLog
from league.utils.exceptions import ConflictError, LeagueError, PersistenceError
from league.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = Config.get_async_database_url(database_url)
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        self.engine = create_async_engine(
            self.database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create schema: {e}")
            raise PersistenceError("initialize", str(e))

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.

        Usage:
            async with db.transaction() as session:
                session.add(match)
                session.add_all(results)
                # Everything commits together here
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def atomic(self, operation: str):
        """
        Transaction boundary that also translates storage failures.

        League errors raised inside the block propagate unchanged after
        rollback. A constraint violation means a concurrent writer won and
        becomes ConflictError; any other SQLAlchemy failure becomes
        PersistenceError.
        """
        try:
            async with self.transaction() as session:
                yield session
        except LeagueError:
            raise
        except IntegrityError as e:
            self.logger.warning(f"Conflict during {operation}: {e.orig}")
            raise ConflictError(f"Concurrent update during {operation}")
        except SQLAlchemyError as e:
            self.logger.error(f"Database error during {operation}: {e}")
            raise PersistenceError(operation, str(e))

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()

    # Player / deck lookups

    async def get_player(self, player_id: int) -> Optional[Player]:
        """Get a player by id"""
        async with self.get_session() as session:
            return await session.get(Player, player_id)

    async def get_player_by_username(self, username: str) -> Optional[Player]:
        """Get a player by their username"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Player).where(Player.username == username)
            )
            return result.scalar_one_or_none()

    async def get_deck(self, deck_id: int) -> Optional[Deck]:
        """Get a deck by id"""
        async with self.get_session() as session:
            return await session.get(Deck, deck_id)

    # Activity log

    def log_activity(self, session: AsyncSession, player_id: int, action: str,
                     details: Optional[Dict[str, Any]] = None) -> ActivityLog:
        """
        Stage an activity log row on the caller's session.

        The row commits (or rolls back) together with the action it records.
        """
        entry = ActivityLog(player_id=player_id, action=action, details=details or {})
        session.add(entry)
        return entry

    async def get_activity(self, player_id: int, limit: int = 50) -> List[ActivityLog]:
        """Most recent activity entries for a player"""
        async with self.get_session() as session:
            result = await session.execute(
                select(ActivityLog)
                .where(ActivityLog.player_id == player_id)
                .order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
