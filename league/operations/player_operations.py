"""
Player Operations Module

Business logic for player registration and deck management.

Key functionality:
- register_player(): create a league account with the starting rating
- register_deck(): a player may hold several decks, each rated separately
- set_deck_active(): owners retire or restore decks; inactive decks cannot
  join lobbies but keep their rating history
"""

from typing import List, Optional
from contextlib import asynccontextmanager
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from league.config import Config
from league.database.models import Player, Deck
from league.utils.elo import EloCalculator
from league.utils.exceptions import (
    LeagueValidationError, NotFoundError, PermissionDeniedError, StateError
)
from league.utils.logger import setup_logger

logger = setup_logger(__name__)

MAX_USERNAME_LENGTH = 100


class PlayerOperations:
    """
    Business logic operations for Player and Deck lifecycle.
    """

    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new session.
        """
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    @staticmethod
    def _clean_username(username: str) -> str:
        username = (username or "").strip()
        if not username:
            raise LeagueValidationError("Username is required", "Please choose a username.")
        if len(username) > MAX_USERNAME_LENGTH:
            raise LeagueValidationError(
                f"Username longer than {MAX_USERNAME_LENGTH} characters",
                f"Usernames are limited to {MAX_USERNAME_LENGTH} characters."
            )
        return username

    async def register_player(self, username: str, display_name: Optional[str] = None,
                              is_admin: bool = False) -> Player:
        """
        Create a new player at the starting rating.

        Raises:
            LeagueValidationError: Blank or overlong username
            StateError: Username already taken
        """
        username = self._clean_username(username)

        async with self.db.atomic("register_player") as session:
            taken = await session.execute(
                select(Player.id).where(Player.username == username)
            )
            if taken.scalar_one_or_none() is not None:
                raise StateError(
                    f"Username '{username}' already registered",
                    "That username is already taken."
                )

            player = Player(
                username=username,
                display_name=(display_name or "").strip() or username,
                elo=Config.STARTING_ELO,
                is_admin=is_admin
            )
            session.add(player)
            await session.flush()
            self.db.log_activity(session, player.id, 'register', {'username': username})

        self.logger.info(f"Registered Player {player.id} ({username})")
        return player

    async def get_player(self, player_id: int) -> Player:
        player = await self.db.get_player(player_id)
        if player is None:
            raise NotFoundError("Player", player_id)
        return player

    async def register_deck(self, player_id: int, name: str, commander_name: str,
                            decklist_url: Optional[str] = None) -> Deck:
        """
        Register a deck for a player, rated from the starting Elo.

        Raises:
            NotFoundError: Unknown player
            LeagueValidationError: Missing deck or commander name
        """
        name = (name or "").strip()
        commander_name = (commander_name or "").strip()
        if not name or not commander_name:
            raise LeagueValidationError(
                "Deck name and commander are required",
                "Please give your deck a name and a commander."
            )

        async with self.db.atomic("register_deck") as session:
            player = await session.get(Player, player_id)
            if player is None:
                raise NotFoundError("Player", player_id)

            deck = Deck(
                player_id=player_id,
                name=name,
                commander_name=commander_name,
                decklist_url=(decklist_url or "").strip() or None,
                elo=Config.STARTING_ELO
            )
            session.add(deck)
            await session.flush()
            self.db.log_activity(session, player_id, 'deck_register', {
                'deck_id': deck.id, 'commander': commander_name
            })

        self.logger.info(f"Player {player_id} registered Deck {deck.id} ({commander_name})")
        return deck

    async def set_deck_active(self, deck_id: int, player_id: int, is_active: bool) -> Deck:
        """
        Retire or restore a deck. Only the owner may do this.

        Raises:
            NotFoundError: Unknown deck
            PermissionDeniedError: Deck belongs to someone else
        """
        async with self.db.atomic("set_deck_active") as session:
            deck = await session.get(Deck, deck_id)
            if deck is None:
                raise NotFoundError("Deck", deck_id)
            if deck.player_id != player_id:
                raise PermissionDeniedError(
                    f"Player {player_id} does not own Deck {deck_id}",
                    "You can only change your own decks."
                )

            deck.is_active = is_active
            self.db.log_activity(session, player_id, 'deck_toggle', {
                'deck_id': deck_id, 'is_active': is_active
            })

        self.logger.info(f"Deck {deck_id} {'activated' if is_active else 'deactivated'}")
        return deck

    async def get_player_decks(self, player_id: int, active_only: bool = False,
                               session: Optional[AsyncSession] = None) -> List[Deck]:
        """Decks of a player, newest first"""
        async with self._get_session_context(session) as s:
            stmt = select(Deck).where(Deck.player_id == player_id)
            if active_only:
                stmt = stmt.where(Deck.is_active == True)
            result = await s.execute(stmt.order_by(Deck.created_at.desc(), Deck.id.desc()))
            return list(result.scalars().all())

    async def get_highest_deck_elo(self, player_id: int) -> int:
        """Best active deck rating of a player; 0 when they have none"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Deck.elo).where(Deck.player_id == player_id, Deck.is_active == True)
            )
            return EloCalculator.get_highest_rating(result.scalars().all())

    async def count_player_decks(self, player_id: int) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(Deck.id)).where(Deck.player_id == player_id)
            )
            return result.scalar() or 0
