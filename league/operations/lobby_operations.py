"""
Lobby Operations Module

Pre-match lobby lifecycle for four-player games:

    empty -> waiting (1-3) -> full_unready -> full_ready -> starting -> started

Members may leave or un-ready at any time before the start, dropping the
lobby back to an earlier state. When four members are all ready a countdown
task begins; any leave or un-ready during the countdown cancels it. At expiry
MatchOperations.start_match_from_lobby performs the transition atomically and
re-checks readiness, so a start never proceeds on stale state.
"""

import asyncio
import secrets
from typing import Dict, List, Optional, Set
from sqlalchemy import select, update, delete, exists
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from league.config import Config
from league.database.models import (
    Lobby, LobbyMembership, LobbyStatus, LobbyState,
    Player, Deck, Match, utc_now
)
from league.services.change_feed import ChangeEvent, record_to_dict
from league.utils.exceptions import (
    LeagueError, LeagueValidationError, LobbyFullError,
    NotFoundError, PermissionDeniedError, StateError
)
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


def derive_lobby_state(status: LobbyStatus, member_count: int, ready_count: int,
                       countdown_active: bool = False,
                       capacity: int = Config.LOBBY_CAPACITY) -> LobbyState:
    """Derive the lifecycle state of a lobby from its stored facts"""
    if status == LobbyStatus.IN_PROGRESS:
        return LobbyState.STARTED
    if member_count == 0:
        return LobbyState.EMPTY
    if member_count < capacity:
        return LobbyState.WAITING
    if ready_count < member_count:
        return LobbyState.FULL_UNREADY
    if countdown_active:
        return LobbyState.STARTING
    return LobbyState.FULL_READY


class LobbyOperations:
    """
    Lobby state machine and countdown coordinator.

    Owns the countdown tasks of this process; everything else lives in the
    database.
    """

    def __init__(self, database, match_operations, change_feed=None,
                 countdown_seconds: Optional[float] = None):
        """
        Args:
            database: Database instance
            match_operations: MatchOperations used to start matches
            change_feed: Optional ChangeFeed for realtime notifications
            countdown_seconds: Grace window before start, defaults to config
        """
        self.db = database
        self.match_ops = match_operations
        self.change_feed = change_feed
        self.countdown_seconds = (
            Config.LOBBY_COUNTDOWN_SECONDS if countdown_seconds is None else countdown_seconds
        )
        self.logger = logger
        self._countdowns: Dict[int, asyncio.Task] = {}
        self._launching: Set[int] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_lobby(self, session: AsyncSession, lobby_id: int) -> Optional[Lobby]:
        result = await session.execute(
            select(Lobby)
            .options(
                selectinload(Lobby.memberships).selectinload(LobbyMembership.player),
                selectinload(Lobby.memberships).selectinload(LobbyMembership.deck),
                selectinload(Lobby.match)
            )
            .where(Lobby.id == lobby_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_eligible_player(self, session: AsyncSession, player_id: int, deck_id: int):
        """Check the player exists, owns an active deck and is free to play"""
        player = await session.get(Player, player_id)
        if player is None or not player.is_active:
            raise NotFoundError("Player", player_id)

        deck = await session.get(Deck, deck_id)
        if deck is None:
            raise NotFoundError("Deck", deck_id)
        if deck.player_id != player_id:
            raise PermissionDeniedError(
                f"Deck {deck_id} does not belong to Player {player_id}",
                "You can only play with your own decks."
            )
        if not deck.is_active:
            raise StateError(
                f"Deck {deck_id} is inactive",
                "That deck is inactive. Reactivate it or pick another."
            )

        if await self.match_ops.has_unresolved_match(player_id, session=session):
            raise StateError(
                f"Player {player_id} has an unresolved match",
                "Finish and validate your current match before joining another game."
            )

        in_other_lobby = await session.execute(
            select(exists().where(
                LobbyMembership.player_id == player_id,
                LobbyMembership.lobby_id == Lobby.id,
                Lobby.status == LobbyStatus.WAITING
            ))
        )
        if in_other_lobby.scalar():
            raise StateError(
                f"Player {player_id} is already waiting in a lobby",
                "Leave your current lobby before joining another."
            )

    async def _generate_code(self, session: AsyncSession) -> str:
        for _ in range(10):
            code = ''.join(
                secrets.choice(Config.LOBBY_CODE_ALPHABET) for _ in range(Config.LOBBY_CODE_LENGTH)
            )
            taken = await session.execute(select(exists().where(Lobby.code == code)))
            if not taken.scalar():
                return code
        raise StateError("Could not allocate a unique lobby code", "Please try again.")

    @staticmethod
    def _next_free_seat(lobby: Lobby) -> int:
        taken = {m.seat for m in lobby.memberships}
        for seat in range(1, Config.LOBBY_CAPACITY + 1):
            if seat not in taken:
                return seat
        raise LobbyFullError(lobby.id)

    async def _publish(self, events: List[ChangeEvent]):
        if self.change_feed is not None:
            await self.change_feed.publish_many(events)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create_lobby(self, player_id: int, name: str, deck_id: int) -> Lobby:
        """
        Create a lobby; the creator takes seat 1, not ready.

        Raises:
            LeagueValidationError: Blank name
            NotFoundError / PermissionDeniedError / StateError: Player or deck
                not eligible
        """
        name = (name or "").strip()
        if not name:
            raise LeagueValidationError("Lobby name is required", "Please name your lobby.")

        async with self.db.atomic("create_lobby") as session:
            await self._require_eligible_player(session, player_id, deck_id)

            lobby = Lobby(
                name=name,
                code=await self._generate_code(session),
                created_by=player_id,
                status=LobbyStatus.WAITING
            )
            session.add(lobby)
            await session.flush()

            session.add(LobbyMembership(
                lobby_id=lobby.id,
                player_id=player_id,
                deck_id=deck_id,
                seat=1,
                is_ready=False
            ))
            self.db.log_activity(session, player_id, 'lobby_create', {'lobby_id': lobby.id})
            lobby_id = lobby.id

        lobby = await self.get_lobby(lobby_id)
        self.logger.info(f"Player {player_id} created Lobby {lobby_id} ({lobby.code})")
        await self._publish([
            ChangeEvent('lobbies', 'insert', lobby_id, record_to_dict(lobby)),
            ChangeEvent('lobby_players', 'insert', lobby_id, record_to_dict(lobby.memberships[0])),
        ])
        return lobby

    async def join_lobby(self, lobby_id: int, player_id: int, deck_id: int) -> LobbyMembership:
        """
        Take the lowest free seat in a waiting lobby.

        Raises:
            NotFoundError: Lobby does not exist
            StateError: Lobby started, or player already a member
            LobbyFullError: All four seats taken
            ConflictError: A concurrent join took the same seat
        """
        async with self.db.atomic("join_lobby") as session:
            lobby = await self._load_lobby(session, lobby_id)
            if lobby is None:
                raise NotFoundError("Lobby", lobby_id)
            if lobby.status != LobbyStatus.WAITING:
                raise StateError(f"Lobby {lobby_id} already started", "This lobby has already started.")
            if lobby.get_membership(player_id) is not None:
                raise StateError(
                    f"Player {player_id} is already in Lobby {lobby_id}",
                    "You are already in this lobby."
                )
            if lobby.member_count >= Config.LOBBY_CAPACITY:
                raise LobbyFullError(lobby_id)

            await self._require_eligible_player(session, player_id, deck_id)

            membership = LobbyMembership(
                lobby_id=lobby_id,
                player_id=player_id,
                deck_id=deck_id,
                seat=self._next_free_seat(lobby),
                is_ready=False
            )
            session.add(membership)
            await session.flush()
            self.db.log_activity(session, player_id, 'lobby_join', {'lobby_id': lobby_id})

        self.logger.info(f"Player {player_id} joined Lobby {lobby_id} in seat {membership.seat}")
        await self._publish([ChangeEvent('lobby_players', 'insert', lobby_id, record_to_dict(membership))])
        await self._reconcile_countdown(lobby_id)
        return membership

    async def leave_lobby(self, lobby_id: int, player_id: int) -> None:
        """
        Give up the player's seat before the match starts. No penalty.

        Raises:
            NotFoundError: Lobby does not exist
            StateError: Lobby already started, or player not a member
        """
        async with self.db.atomic("leave_lobby") as session:
            lobby = await session.get(Lobby, lobby_id)
            if lobby is None:
                raise NotFoundError("Lobby", lobby_id)
            if lobby.status != LobbyStatus.WAITING:
                raise StateError(f"Lobby {lobby_id} already started", "This lobby has already started.")

            removed = await session.execute(
                delete(LobbyMembership)
                .where(LobbyMembership.lobby_id == lobby_id, LobbyMembership.player_id == player_id)
                .execution_options(synchronize_session=False)
            )
            if removed.rowcount == 0:
                raise StateError(
                    f"Player {player_id} is not in Lobby {lobby_id}",
                    "You are not in this lobby."
                )
            self.db.log_activity(session, player_id, 'lobby_leave', {'lobby_id': lobby_id})

        interrupted = self._cancel_countdown(lobby_id)
        self.logger.info(f"Player {player_id} left Lobby {lobby_id}")
        await self._publish([ChangeEvent('lobby_players', 'delete', lobby_id, {
            'lobby_id': lobby_id, 'player_id': player_id
        })])
        await self._reconcile_countdown(lobby_id, interrupted)

    async def set_ready(self, lobby_id: int, player_id: int, is_ready: bool,
                        target_player_id: Optional[int] = None) -> LobbyMembership:
        """
        Flip a member's ready flag, recording or clearing the ready time.

        Args:
            lobby_id: Lobby to update
            player_id: Acting player
            is_ready: New flag value
            target_player_id: Membership to change, defaults to the acting
                player; anyone else's is rejected

        Raises:
            PermissionDeniedError: Acting on another player's membership
            NotFoundError / StateError: Lobby missing, started, or player
                not a member
        """
        if target_player_id is not None and target_player_id != player_id:
            raise PermissionDeniedError(
                f"Player {player_id} tried to change the ready flag of Player {target_player_id}",
                "You can only change your own ready status."
            )

        async with self.db.atomic("set_ready") as session:
            lobby = await session.get(Lobby, lobby_id)
            if lobby is None:
                raise NotFoundError("Lobby", lobby_id)
            if lobby.status != LobbyStatus.WAITING:
                raise StateError(f"Lobby {lobby_id} already started", "This lobby has already started.")

            updated = await session.execute(
                update(LobbyMembership)
                .where(LobbyMembership.lobby_id == lobby_id, LobbyMembership.player_id == player_id)
                .values(is_ready=is_ready, ready_at=utc_now() if is_ready else None)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                raise StateError(
                    f"Player {player_id} is not in Lobby {lobby_id}",
                    "You are not in this lobby."
                )
            self.db.log_activity(session, player_id, 'lobby_ready', {
                'lobby_id': lobby_id, 'is_ready': is_ready
            })

            result = await session.execute(
                select(LobbyMembership).where(
                    LobbyMembership.lobby_id == lobby_id,
                    LobbyMembership.player_id == player_id
                )
            )
            membership = result.scalar_one()

        interrupted = not is_ready and self._cancel_countdown(lobby_id)
        self.logger.info(f"Player {player_id} is {'ready' if is_ready else 'not ready'} in Lobby {lobby_id}")
        await self._publish([ChangeEvent('lobby_players', 'update', lobby_id, record_to_dict(membership))])
        await self._reconcile_countdown(lobby_id, interrupted)
        return membership

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------

    def is_counting_down(self, lobby_id: int) -> bool:
        task = self._countdowns.get(lobby_id)
        return task is not None and not task.done()

    async def _reconcile_countdown(self, lobby_id: int, interrupted: bool = False) -> None:
        """
        Start or cancel the countdown to match the lobby's current state.

        Args:
            lobby_id: Lobby to check
            interrupted: The caller already cancelled a running countdown, so
                a fresh one is needed if everyone is ready again
        """
        lobby = await self.get_lobby(lobby_id)
        if lobby is None:
            return

        should_count = (
            lobby.status == LobbyStatus.WAITING
            and lobby.member_count == Config.LOBBY_CAPACITY
            and lobby.all_ready
        )

        if should_count and not self.is_counting_down(lobby_id):
            task = asyncio.create_task(self._run_countdown(lobby_id))
            self._countdowns[lobby_id] = task
            task.add_done_callback(lambda t: self._forget_countdown(lobby_id, t))
            self.logger.info(f"Lobby {lobby_id} all ready, starting in {self.countdown_seconds}s")
            await self._publish([ChangeEvent('lobbies', 'update', lobby_id, {
                'id': lobby_id, 'state': LobbyState.STARTING.value,
                'countdown_seconds': self.countdown_seconds
            })])
        elif not should_count and (self._cancel_countdown(lobby_id) or interrupted):
            self.logger.info(f"Countdown for Lobby {lobby_id} cancelled")
            await self._publish([ChangeEvent('lobbies', 'update', lobby_id, {
                'id': lobby_id, 'state': self._derive(lobby).value
            })])

    def _cancel_countdown(self, lobby_id: int) -> bool:
        """Cancel a countdown still in its grace window"""
        task = self._countdowns.get(lobby_id)
        if task is None or task.done() or lobby_id in self._launching:
            return False
        task.cancel()
        del self._countdowns[lobby_id]
        return True

    def _forget_countdown(self, lobby_id: int, task: asyncio.Task):
        if self._countdowns.get(lobby_id) is task:
            del self._countdowns[lobby_id]
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Countdown for Lobby {lobby_id} crashed: {task.exception()}")

    async def _run_countdown(self, lobby_id: int) -> Optional[Match]:
        await asyncio.sleep(self.countdown_seconds)

        # Past the grace window the start can no longer be cancelled
        self._launching.add(lobby_id)
        try:
            return await self.match_ops.start_match_from_lobby(lobby_id)
        except StateError as e:
            self.logger.warning(f"Lobby {lobby_id} could not start: {e}")
            return None
        except LeagueError as e:
            self.logger.error(f"Failed to start match for Lobby {lobby_id}: {e}")
            return None
        finally:
            self._launching.discard(lobby_id)

    async def wait_for_countdown(self, lobby_id: int) -> Optional[Match]:
        """
        Wait for a running countdown to finish.

        Returns:
            The started Match, or None when no countdown was running, it was
            cancelled, or the start was refused
        """
        task = self._countdowns.get(lobby_id)
        if task is None:
            return None
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _derive(self, lobby: Lobby) -> LobbyState:
        return derive_lobby_state(
            lobby.status,
            lobby.member_count,
            sum(1 for m in lobby.memberships if m.is_ready),
            countdown_active=self.is_counting_down(lobby.id)
        )

    async def get_lobby(self, lobby_id: int) -> Optional[Lobby]:
        """Lobby with memberships, players and decks"""
        async with self.db.get_session() as session:
            return await self._load_lobby(session, lobby_id)

    async def get_lobby_by_code(self, code: str) -> Optional[Lobby]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Lobby.id).where(Lobby.code == code.strip().upper())
            )
            lobby_id = result.scalar_one_or_none()
            if lobby_id is None:
                return None
            return await self._load_lobby(session, lobby_id)

    async def get_lobby_state(self, lobby_id: int) -> LobbyState:
        lobby = await self.get_lobby(lobby_id)
        if lobby is None:
            raise NotFoundError("Lobby", lobby_id)
        return self._derive(lobby)

    async def list_open_lobbies(self, limit: int = 20) -> List[Lobby]:
        """Waiting lobbies with at least one member, newest first"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Lobby)
                .options(
                    selectinload(Lobby.memberships).selectinload(LobbyMembership.player),
                    selectinload(Lobby.memberships).selectinload(LobbyMembership.deck)
                )
                .where(
                    Lobby.status == LobbyStatus.WAITING,
                    exists().where(LobbyMembership.lobby_id == Lobby.id)
                )
                .order_by(Lobby.created_at.desc(), Lobby.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def close(self):
        """Cancel every pending countdown"""
        tasks = list(self._countdowns.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._countdowns.clear()
