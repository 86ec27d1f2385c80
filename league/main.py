import asyncio
import logging
import traceback
from typing import Optional

from league.config import Config
from league.database.database import Database
from league.database.match_operations import MatchOperations
from league.operations.contest_operations import ContestOperations
from league.operations.lobby_operations import LobbyOperations
from league.operations.player_operations import PlayerOperations
from league.operations.report_operations import ReportOperations
from league.services.change_feed import ChangeFeed
from league.services.leaderboard import LeaderboardService
from league.utils.redis_utils import RedisUtils
from league.utils.logger import setup_logger


class LeagueCore:
    """
    Composition root: owns the database, the change feed and every service.

    Services receive their collaborators through their constructors; nothing
    is reachable through module globals.
    """

    def __init__(self, database_url: Optional[str] = None,
                 countdown_seconds: Optional[float] = None,
                 use_redis: Optional[bool] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.countdown_seconds = countdown_seconds
        self.use_redis = Config.REDIS_ENABLED if use_redis is None else use_redis

        self.db: Optional[Database] = None
        self.change_feed: Optional[ChangeFeed] = None
        self.players: Optional[PlayerOperations] = None
        self.matches: Optional[MatchOperations] = None
        self.lobbies: Optional[LobbyOperations] = None
        self.reports: Optional[ReportOperations] = None
        self.contests: Optional[ContestOperations] = None
        self.leaderboard: Optional[LeaderboardService] = None
        self._subscriptions = []

    async def initialize(self) -> 'LeagueCore':
        """Connect storage, create the schema and wire the services"""
        self.logger.info("Setting up league core...")

        self.db = Database(self.database_url)
        await self.db.initialize()

        redis_client = await RedisUtils.create_redis_client() if self.use_redis else None
        if self.use_redis and redis_client is None:
            self.logger.warning("Redis unavailable, change feed stays in-process")
        self.change_feed = ChangeFeed(redis_client)

        self.players = PlayerOperations(self.db)
        self.matches = MatchOperations(self.db, self.change_feed)
        self.lobbies = LobbyOperations(
            self.db, self.matches, self.change_feed,
            countdown_seconds=self.countdown_seconds
        )
        self.reports = ReportOperations(self.db)
        self.contests = ContestOperations(self.db)
        self.leaderboard = LeaderboardService(self.db.async_session, cache_ttl=Config.LEADERBOARD_CACHE_TTL)

        # Ratings move when a result row is validated
        self._subscriptions.append(
            self.change_feed.subscribe('match_results', callback=self.leaderboard.invalidate)
        )

        self.logger.info("League core setup complete!")
        return self

    async def close(self):
        """Cancel countdowns, detach subscribers and dispose the engine"""
        self.logger.info("Shutting down league core...")

        if self.lobbies:
            await self.lobbies.close()
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        if self.change_feed:
            await self.change_feed.close()
        if self.db:
            await self.db.close()

    async def __aenter__(self) -> 'LeagueCore':
        return await self.initialize()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


async def main():
    """Main entry point: validate configuration and create the schema"""
    Config.validate()

    core = LeagueCore()
    try:
        await core.initialize()
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await core.close()

def run():
    """Console script entry point"""
    asyncio.run(main())

if __name__ == "__main__":
    run()
