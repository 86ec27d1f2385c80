"""
Leaderboard service.

Player and deck rankings by Elo with a short TTL cache. Ties share a rank
(1, 2, 2, 4). The cache is dropped whenever ratings change.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select

from league.config import Config
from league.data_models.leaderboard import LeaderboardEntry, DeckLeaderboardEntry
from league.database.models import Player, Deck
from league.services.base import BaseService
from league.utils.elo import EloCalculator
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


def competition_ranks(ratings: List[int]) -> List[int]:
    """Ranks for ratings already sorted descending; equal ratings share a rank"""
    ranks = []
    for index, rating in enumerate(ratings):
        if index > 0 and rating == ratings[index - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(index + 1)
    return ranks


class LeaderboardService(BaseService):
    """Service for leaderboard queries with caching."""

    def __init__(self, session_factory, cache_ttl: float = 30.0):
        super().__init__(session_factory)
        self._cache: Dict[Tuple[str, int], Tuple[float, List[Any]]] = {}
        self._cache_ttl = cache_ttl
        self._cache_lock = asyncio.Lock()

    async def _cached(self, key: Tuple[str, int]) -> Optional[List[Any]]:
        async with self._cache_lock:
            hit = self._cache.get(key)
            if hit is None:
                return None
            stored_at, entries = hit
            if time.monotonic() - stored_at >= self._cache_ttl:
                del self._cache[key]
                return None
            return entries

    async def _store(self, key: Tuple[str, int], entries: List[Any]):
        async with self._cache_lock:
            self._cache[key] = (time.monotonic(), entries)

    async def invalidate(self, *_):
        """Drop every cached page. Usable as a change feed callback."""
        async with self._cache_lock:
            self._cache.clear()

    @staticmethod
    def _check_limit(limit: int):
        if not isinstance(limit, int) or limit < 1 or limit > Config.LEADERBOARD_LIMIT:
            raise ValueError(f"limit must be between 1 and {Config.LEADERBOARD_LIMIT}")

    async def get_player_leaderboard(self, limit: int = Config.LEADERBOARD_LIMIT) -> List[LeaderboardEntry]:
        """Players with at least one rated match, best rating first."""
        self._check_limit(limit)
        key = ('players', limit)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        async with self.get_session() as session:
            result = await session.execute(
                select(Player)
                .where(Player.matches_played > 0, Player.is_active == True)
                .order_by(Player.elo.desc(), Player.matches_played.desc(), Player.id)
                .limit(limit)
            )
            players = list(result.scalars().all())

        ranks = competition_ranks([p.elo for p in players])
        entries = [
            LeaderboardEntry(
                rank=rank,
                player_id=player.id,
                display_name=player.display_name or player.username,
                elo=player.elo,
                tier=EloCalculator.get_tier(player.elo),
                matches_played=player.matches_played,
                wins=player.wins,
                win_rate=round(player.win_rate, 1)
            )
            for rank, player in zip(ranks, players)
        ]
        await self._store(key, entries)
        logger.debug(f"Built player leaderboard with {len(entries)} entries")
        return entries

    async def get_deck_leaderboard(self, limit: int = Config.LEADERBOARD_LIMIT) -> List[DeckLeaderboardEntry]:
        """Active decks with at least one rated game, best rating first."""
        self._check_limit(limit)
        key = ('decks', limit)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        async with self.get_session() as session:
            result = await session.execute(
                select(Deck, Player.display_name, Player.username)
                .join(Player, Deck.player_id == Player.id)
                .where(Deck.is_active == True, Deck.games_played > 0)
                .order_by(Deck.elo.desc(), Deck.games_played.desc(), Deck.id)
                .limit(limit)
            )
            rows = result.all()

        ranks = competition_ranks([deck.elo for deck, _, _ in rows])
        entries = [
            DeckLeaderboardEntry(
                rank=rank,
                deck_id=deck.id,
                deck_name=deck.name,
                commander_name=deck.commander_name,
                owner_name=display_name or username,
                elo=deck.elo,
                tier=EloCalculator.get_tier(deck.elo),
                games_played=deck.games_played,
                wins=deck.wins,
                decklist_url=deck.decklist_url
            )
            for rank, (deck, display_name, username) in zip(ranks, rows)
        ]
        await self._store(key, entries)
        logger.debug(f"Built deck leaderboard with {len(entries)} entries")
        return entries
