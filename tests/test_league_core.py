"""Tests for the composition root and the storage layer it wires."""

import pytest

from league.database.database import Database
from league.main import LeagueCore
from league.utils.exceptions import ConflictError, LeagueError, PersistenceError

from conftest import start_match


async def test_core_wires_services(tmp_path):
    async with LeagueCore(
        database_url=f"sqlite:///{tmp_path / 'core.db'}",
        countdown_seconds=0.01,
        use_redis=False
    ) as core:
        assert core.db.database_url.startswith("sqlite+aiosqlite:///")
        assert core.lobbies.match_ops is core.matches
        assert core.matches.change_feed is core.change_feed

        roster = []
        for name in ("ann", "ben", "cal", "dee"):
            player = await core.players.register_player(name)
            deck = await core.players.register_deck(player.id, "Deck", "Commander")
            roster.append((player, deck))

        _, match = await start_match(core.lobbies, roster)
        await core.matches.submit_placements(
            match.id, roster[0][0].id, {p.id: i for i, (p, _) in enumerate(roster, start=1)}
        )

        assert await core.leaderboard.get_player_leaderboard() == []
        await core.matches.validate_result(match.id, roster[0][0].id)
        entries = await core.leaderboard.get_player_leaderboard()
        assert [(e.player_id, e.elo) for e in entries] == [(roster[0][0].id, 1016)]
        assert [s.queue.qsize() for s in core._subscriptions] == [0]


async def test_atomic_translates_integrity_errors(db):
    from league.database.models import Player

    async with db.atomic("seed") as session:
        session.add(Player(username="dup", display_name="dup"))

    with pytest.raises(ConflictError) as excinfo:
        async with db.atomic("insert duplicate") as session:
            session.add(Player(username="dup", display_name="again"))
    assert excinfo.value.retryable

    assert (await db.get_player_by_username("dup")).display_name == "dup"


async def test_atomic_passes_league_errors_through(db):
    class Refused(LeagueError):
        pass

    with pytest.raises(Refused):
        async with db.atomic("refuse"):
            raise Refused("no")


async def test_unreachable_database(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'league.db'}")
    with pytest.raises(PersistenceError):
        await database.initialize()
    await database.close()
