"""Tests for player and deck leaderboards."""

import pytest

from league.services.leaderboard import LeaderboardService, competition_ranks

from conftest import set_rating


@pytest.fixture
def leaderboard(db):
    return LeaderboardService(db.async_session, cache_ttl=60)


def test_competition_ranks():
    assert competition_ranks([1200, 1100, 1100, 900]) == [1, 2, 2, 4]
    assert competition_ranks([]) == []


async def test_player_leaderboard_skips_unplayed(db, leaderboard, roster):
    ratings = [(1310, 12), (1050, 3), (1050, 8), (990, 0)]
    for (player, _), (elo, games) in zip(roster, ratings):
        await set_rating(db, player.id, elo, games)

    entries = await leaderboard.get_player_leaderboard()

    assert [e.player_id for e in entries] == [roster[0][0].id, roster[2][0].id, roster[1][0].id]
    assert [e.rank for e in entries] == [1, 2, 2]
    assert [e.tier for e in entries] == ["Diamond", "Gold", "Gold"]


async def test_deck_leaderboard(db, leaderboard, player_ops, roster):
    for (player, deck), elo in zip(roster, (1000, 1250, 780, 1410)):
        await set_rating(db, player.id, elo, 5, deck_id=deck.id)
    retired_player, retired_deck = roster[3]
    await player_ops.set_deck_active(retired_deck.id, retired_player.id, False)

    entries = await leaderboard.get_deck_leaderboard(limit=10)

    assert [e.deck_id for e in entries] == [roster[1][1].id, roster[0][1].id, roster[2][1].id]
    assert [e.tier for e in entries] == ["Platinum", "Gold", "Bronze"]
    assert entries[0].owner_name == roster[1][0].display_name
    assert entries[0].commander_name == "Ghoulcaller Gisa"


async def test_cache_and_invalidate(db, leaderboard, roster):
    player, _ = roster[0]
    await set_rating(db, player.id, 1100, 1)
    assert [e.elo for e in await leaderboard.get_player_leaderboard()] == [1100]

    await set_rating(db, player.id, 1150, 2)
    assert [e.elo for e in await leaderboard.get_player_leaderboard()] == [1100]

    await leaderboard.invalidate()
    assert [e.elo for e in await leaderboard.get_player_leaderboard()] == [1150]


@pytest.mark.parametrize("limit", [0, 51, "10"])
async def test_limit_validated(leaderboard, limit):
    with pytest.raises(ValueError):
        await leaderboard.get_player_leaderboard(limit)
