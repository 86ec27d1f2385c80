"""
Leaderboard data models.

Immutable data transfer objects returned by LeaderboardService.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single player leaderboard row."""
    rank: int
    player_id: int
    display_name: str
    elo: int
    tier: str
    matches_played: int
    wins: int
    win_rate: float


@dataclass(frozen=True)
class DeckLeaderboardEntry:
    """Single deck leaderboard row."""
    rank: int
    deck_id: int
    deck_name: str
    commander_name: str
    owner_name: str
    elo: int
    tier: str
    games_played: int
    wins: int
    decklist_url: Optional[str] = None
