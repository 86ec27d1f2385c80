"""Tests for player registration and deck management."""

import pytest

from league.config import Config
from league.utils.exceptions import (
    LeagueValidationError, NotFoundError, PermissionDeniedError, StateError
)


async def test_register_player_defaults(db, player_ops):
    player = await player_ops.register_player("  Tomas ")

    assert player.username == "Tomas"
    assert player.display_name == "Tomas"
    assert player.elo == Config.STARTING_ELO
    assert player.matches_played == 0
    assert not player.is_admin
    assert player.win_rate == 0.0

    activity = await db.get_activity(player.id)
    assert [a.action for a in activity] == ['register']


async def test_duplicate_username_rejected(player_ops):
    await player_ops.register_player("tomas")
    with pytest.raises(StateError):
        await player_ops.register_player("tomas")


@pytest.mark.parametrize("username", ["", "   ", "x" * 101])
async def test_invalid_username(player_ops, username):
    with pytest.raises(LeagueValidationError):
        await player_ops.register_player(username)


async def test_get_player(db, player_ops):
    player = await player_ops.register_player("tomas", display_name="Tomas the Brave")
    assert (await player_ops.get_player(player.id)).display_name == "Tomas the Brave"
    assert (await db.get_player_by_username("tomas")).id == player.id
    with pytest.raises(NotFoundError):
        await player_ops.get_player(999)


async def test_multiple_decks(player_ops):
    player = await player_ops.register_player("tomas")
    first = await player_ops.register_deck(player.id, "Goblins", "Krenko, Tin Street Kingpin",
                                           decklist_url="https://example.org/goblins")
    second = await player_ops.register_deck(player.id, "Faeries", "Ninja of the Deep Hours")

    assert first.elo == Config.STARTING_ELO
    assert first.decklist_url == "https://example.org/goblins"
    assert second.decklist_url is None
    assert await player_ops.count_player_decks(player.id) == 2
    decks = await player_ops.get_player_decks(player.id)
    assert {d.id for d in decks} == {first.id, second.id}


async def test_deck_requires_names(player_ops):
    player = await player_ops.register_player("tomas")
    with pytest.raises(LeagueValidationError):
        await player_ops.register_deck(player.id, "Goblins", "  ")
    with pytest.raises(NotFoundError):
        await player_ops.register_deck(999, "Goblins", "Krenko")


async def test_deactivate_deck_owner_only(player_ops):
    owner = await player_ops.register_player("tomas")
    other = await player_ops.register_player("ines")
    deck = await player_ops.register_deck(owner.id, "Goblins", "Krenko")

    with pytest.raises(PermissionDeniedError):
        await player_ops.set_deck_active(deck.id, other.id, False)

    deck = await player_ops.set_deck_active(deck.id, owner.id, False)
    assert not deck.is_active
    assert await player_ops.get_player_decks(owner.id, active_only=True) == []
    assert len(await player_ops.get_player_decks(owner.id)) == 1


async def test_highest_deck_elo(db, player_ops):
    from conftest import set_rating

    player = await player_ops.register_player("tomas")
    assert await player_ops.get_highest_deck_elo(player.id) == 0

    low = await player_ops.register_deck(player.id, "Goblins", "Krenko")
    await player_ops.register_deck(player.id, "Faeries", "Ninja")
    await set_rating(db, player.id, 1000, 0, deck_id=low.id)
    assert await player_ops.get_highest_deck_elo(player.id) == 1000

    await set_rating(db, player.id, 1085, 3, deck_id=low.id)
    assert await player_ops.get_highest_deck_elo(player.id) == 1085

    retired = await player_ops.register_deck(player.id, "Slivers", "Sliver Legion")
    await set_rating(db, player.id, 1400, 20, deck_id=retired.id)
    assert await player_ops.get_highest_deck_elo(player.id) == 1400

    await player_ops.set_deck_active(retired.id, player.id, False)
    assert await player_ops.get_highest_deck_elo(player.id) == 1085
