"""Pytest configuration and fixtures."""

from typing import List, Tuple

import pytest
from sqlalchemy import update

from league.database.database import Database
from league.database.match_operations import MatchOperations
from league.database.models import Player, Deck
from league.operations.contest_operations import ContestOperations
from league.operations.lobby_operations import LobbyOperations
from league.operations.player_operations import PlayerOperations
from league.operations.report_operations import ReportOperations
from league.services.change_feed import ChangeFeed

COUNTDOWN_SECONDS = 0.05


@pytest.fixture
async def db(tmp_path):
    """File-backed SQLite database, one per test."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'league_test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def player_ops(db):
    return PlayerOperations(db)


@pytest.fixture
def match_ops(db, change_feed):
    return MatchOperations(db, change_feed)


@pytest.fixture
async def lobby_ops(db, match_ops, change_feed):
    ops = LobbyOperations(db, match_ops, change_feed, countdown_seconds=COUNTDOWN_SECONDS)
    yield ops
    await ops.close()


@pytest.fixture
def report_ops(db):
    return ReportOperations(db)


@pytest.fixture
def contest_ops(db):
    return ContestOperations(db)


async def set_rating(db, player_id: int, elo: int, games: int, deck_id: int = None):
    """Put a player (and optionally their deck) at a given rating and experience."""
    async with db.transaction() as session:
        await session.execute(
            update(Player).where(Player.id == player_id).values(elo=elo, matches_played=games)
        )
        if deck_id is not None:
            await session.execute(
                update(Deck).where(Deck.id == deck_id).values(elo=elo, games_played=games)
            )


@pytest.fixture
async def roster(player_ops) -> List[Tuple[Player, Deck]]:
    """Four registered players with one deck each."""
    entries = []
    for name, commander in (
        ("alice", "Tatsumasa"), ("bob", "Ghoulcaller Gisa"),
        ("carol", "Kuldotha Flamefiend"), ("dave", "Skrelv"),
    ):
        player = await player_ops.register_player(name)
        deck = await player_ops.register_deck(player.id, f"{name}'s deck", commander)
        entries.append((player, deck))
    return entries


async def fill_lobby(lobby_ops, roster, name: str = "Friday pod"):
    """Create a lobby with the first roster entry and seat the other three."""
    creator, creator_deck = roster[0]
    lobby = await lobby_ops.create_lobby(creator.id, name, creator_deck.id)
    for player, deck in roster[1:]:
        await lobby_ops.join_lobby(lobby.id, player.id, deck.id)
    return lobby


async def start_match(lobby_ops, roster):
    """Fill a lobby, ready everyone and wait for the countdown to start the match."""
    lobby = await fill_lobby(lobby_ops, roster)
    for player, _ in roster:
        await lobby_ops.set_ready(lobby.id, player.id, True)
    match = await lobby_ops.wait_for_countdown(lobby.id)
    assert match is not None
    return lobby, match
