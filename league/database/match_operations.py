"""
Match Operations Module

Operational layer for the lobby-to-match lifecycle, placement submission and
the per-player validation / challenge workflow.

Lifecycle:
- Match: in_progress -> pending_validation -> completed
- MatchResult: unsubmitted -> placed -> validated | challenged

Every multi-row write runs inside a single transaction. Writes that race
with other players (starting a lobby, submitting placements, responding to a
result) are guarded by conditional UPDATEs whose rowcount tells whether this
caller won. Player and deck ratings change only in _commit_rating, which runs
inside the transaction that validates a MatchResult row.
"""

from typing import Dict, List, Optional
from contextlib import asynccontextmanager
from sqlalchemy import select, update, exists, and_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from league.config import Config
from league.database.models import (
    Lobby, LobbyMembership, LobbyStatus,
    Match, MatchResult, MatchStatus,
    Player, Deck, EloHistory, Report, utc_now
)
from league.services.change_feed import ChangeEvent, record_to_dict
from league.utils.elo import EloCalculator
from league.utils.exceptions import (
    AlreadyRespondedError, ConflictError, InvalidPlacementsError,
    LeagueValidationError, NotFoundError, PermissionDeniedError, StateError
)
from league.utils.logger import setup_logger

logger = setup_logger(__name__)

CHALLENGE_REPORT_REASON = "Match result challenged"


class MatchOperations:
    """
    Core service class for Match and MatchResult operations.
    """

    def __init__(self, database, change_feed=None):
        """Initialize with database instance and optional change feed"""
        self.db = database
        self.change_feed = change_feed
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

    async def _load_match(self, session: AsyncSession, match_id: int) -> Optional[Match]:
        result = await session.execute(
            select(Match)
            .options(
                selectinload(Match.results).selectinload(MatchResult.player),
                selectinload(Match.results).selectinload(MatchResult.deck)
            )
            .where(Match.id == match_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _publish(self, events: List[ChangeEvent]):
        if self.change_feed is not None:
            await self.change_feed.publish_many(events)

    # ============================================================================
    # Lobby -> Match transition
    # ============================================================================

    async def start_match_from_lobby(self, lobby_id: int) -> Match:
        """
        Turn a full, all-ready lobby into a Match in one transaction.

        Creates the Match (in_progress) and one MatchResult per membership,
        copying the player/deck pairing and snapshotting ratings, then flips
        the lobby to in_progress. Nothing is written unless every step
        succeeds.

        Raises:
            NotFoundError: Lobby does not exist
            StateError: Lobby already started, not full, or not all ready
        """
        async with self.db.atomic("start_match_from_lobby") as session:
            claimed = await session.execute(
                update(Lobby)
                .where(Lobby.id == lobby_id, Lobby.status == LobbyStatus.WAITING)
                .values(status=LobbyStatus.IN_PROGRESS)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                lobby = await session.get(Lobby, lobby_id)
                if lobby is None:
                    raise NotFoundError("Lobby", lobby_id)
                raise StateError(
                    f"Lobby {lobby_id} already started",
                    "This lobby has already started."
                )

            result = await session.execute(
                select(LobbyMembership)
                .options(selectinload(LobbyMembership.player), selectinload(LobbyMembership.deck))
                .where(LobbyMembership.lobby_id == lobby_id)
                .order_by(LobbyMembership.seat)
            )
            memberships = list(result.scalars().all())

            if len(memberships) != Config.LOBBY_CAPACITY:
                raise StateError(
                    f"Lobby {lobby_id} has {len(memberships)} members, needs {Config.LOBBY_CAPACITY}",
                    "The lobby is not full."
                )
            if not all(m.is_ready for m in memberships):
                raise StateError(
                    f"Lobby {lobby_id} has players that are not ready",
                    "Not every player is ready."
                )

            match = Match(lobby_id=lobby_id, status=MatchStatus.IN_PROGRESS, started_at=utc_now())
            session.add(match)
            await session.flush()

            for membership in memberships:
                session.add(MatchResult(
                    match_id=match.id,
                    player_id=membership.player_id,
                    deck_id=membership.deck_id,
                    elo_before=membership.player.elo,
                    games_before=membership.player.matches_played,
                    deck_elo_before=membership.deck.elo,
                    deck_games_before=membership.deck.games_played
                ))
                self.db.log_activity(session, membership.player_id, 'match_start', {
                    'match_id': match.id, 'lobby_id': lobby_id
                })

            match_id = match.id

        async with self.db.get_session() as session:
            match = await self._load_match(session, match_id)

        self.logger.info(
            f"Started Match {match_id} from Lobby {lobby_id} with players "
            f"{[r.player_id for r in match.results]}"
        )
        await self._publish([
            ChangeEvent('lobbies', 'update', lobby_id, {
                'id': lobby_id, 'status': LobbyStatus.IN_PROGRESS.value, 'match_id': match_id
            }),
            ChangeEvent('matches', 'insert', match_id, record_to_dict(match)),
        ])
        return match

    # ============================================================================
    # Placement submission
    # ============================================================================

    def _validate_placements(self, match: Match, placements: Dict[int, int]) -> None:
        """Placements must map every participant onto 1..N exactly once"""
        if not isinstance(placements, dict):
            raise InvalidPlacementsError("Placements must be a mapping of player id to placement")

        participant_ids = {r.player_id for r in match.results}
        submitted_ids = set(placements.keys())

        missing = participant_ids - submitted_ids
        if missing:
            raise InvalidPlacementsError(
                f"Missing placements for players {sorted(missing)}",
                "Every player needs a placement."
            )
        unknown = submitted_ids - participant_ids
        if unknown:
            raise InvalidPlacementsError(
                f"Players {sorted(unknown)} are not in Match {match.id}",
                "Placements can only be given to players in this match."
            )

        values = list(placements.values())
        for value in values:
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidPlacementsError(f"Placement {value!r} is not an integer")

        expected = list(range(1, len(participant_ids) + 1))
        if sorted(values) != expected:
            raise InvalidPlacementsError(
                f"Placements {sorted(values)} must be exactly {expected}",
                "Each placement must be used exactly once."
            )

    async def submit_placements(self, match_id: int, submitted_by: int,
                                placements: Dict[int, int]) -> Match:
        """
        Record the final placements of all four players (single submission).

        Args:
            match_id: Match being reported
            submitted_by: Participant entering the results
            placements: Mapping of player id to placement (1..4)

        Returns:
            The Match, now pending_validation, with placements written

        Raises:
            NotFoundError: Match does not exist
            PermissionDeniedError: Submitter did not play in the match
            StateError: Results were already submitted
            InvalidPlacementsError: Placements are not a bijection onto 1..4
            ConflictError: Another participant submitted concurrently
        """
        async with self.db.atomic("submit_placements") as session:
            match = await self._load_match(session, match_id)
            if match is None:
                raise NotFoundError("Match", match_id)

            if match.get_result(submitted_by) is None:
                raise PermissionDeniedError(
                    f"Player {submitted_by} is not a participant in Match {match_id}",
                    "Only players in this match can submit results."
                )

            if match.status != MatchStatus.IN_PROGRESS:
                raise StateError(
                    f"Match {match_id} results already submitted (status {match.status.value})",
                    "Results for this match were already submitted."
                )

            self._validate_placements(match, placements)

            winner_id = next(pid for pid, place in placements.items() if place == 1)
            now = utc_now()
            claimed = await session.execute(
                update(Match)
                .where(Match.id == match_id, Match.status == MatchStatus.IN_PROGRESS)
                .values(
                    status=MatchStatus.PENDING_VALIDATION,
                    winner_id=winner_id,
                    submitted_by=submitted_by,
                    submitted_at=now
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                raise ConflictError(f"Results for Match {match_id} were submitted concurrently")

            for result in match.results:
                result.placement = placements[result.player_id]

            self.db.log_activity(session, submitted_by, 'match_submit_result', {
                'match_id': match_id, 'winner_id': winner_id
            })

        async with self.db.get_session() as session:
            match = await self._load_match(session, match_id)

        self.logger.info(f"Player {submitted_by} submitted placements for Match {match_id}: {placements}")
        events = [ChangeEvent('matches', 'update', match_id, record_to_dict(match))]
        events.extend(
            ChangeEvent('match_results', 'update', match_id, record_to_dict(r))
            for r in match.results
        )
        await self._publish(events)
        return match

    # ============================================================================
    # Validation / challenge workflow
    # ============================================================================

    async def _explain_unclaimed_row(self, session: AsyncSession, match_id: int, player_id: int):
        """Raise the reason a guarded update on a MatchResult row matched nothing"""
        result = await session.execute(
            select(MatchResult).where(
                MatchResult.match_id == match_id,
                MatchResult.player_id == player_id
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            if await session.get(Match, match_id) is None:
                raise NotFoundError("Match", match_id)
            raise PermissionDeniedError(
                f"Player {player_id} has no result in Match {match_id}",
                "You did not play in this match."
            )
        if row.placement is None:
            raise StateError(
                f"Match {match_id} has no submitted placements yet",
                "Results have not been submitted yet."
            )
        raise AlreadyRespondedError(
            match_id, player_id, "validated" if row.validated else "challenged"
        )

    async def _complete_if_resolved(self, session: AsyncSession, match_id: int) -> bool:
        """Move the match to completed once every row is validated or challenged"""
        unresolved = exists().where(
            MatchResult.match_id == match_id,
            MatchResult.validated == False,
            MatchResult.challenged == False
        )
        completed = await session.execute(
            update(Match)
            .where(
                Match.id == match_id,
                Match.status == MatchStatus.PENDING_VALIDATION,
                ~unresolved
            )
            .values(status=MatchStatus.COMPLETED, completed_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return completed.rowcount > 0

    async def _commit_rating(self, session: AsyncSession, match: Match, result: MatchResult) -> None:
        """
        Apply the rating change for one validated row.

        Deltas come from the snapshots taken at match start, so the order in
        which players validate does not change anyone's result. Counters are
        incremented in SQL so concurrent commits cannot overwrite each other.
        """
        others = [r for r in match.results if r.player_id != result.player_id]

        elo_change = EloCalculator.calculate_rating_change(
            result.elo_before,
            [r.elo_before for r in others],
            result.placement,
            result.games_before
        )
        deck_elo_change = EloCalculator.calculate_rating_change(
            result.deck_elo_before,
            [r.deck_elo_before for r in others],
            result.placement,
            result.deck_games_before
        )
        is_win = result.placement == 1

        await session.execute(
            update(Player)
            .where(Player.id == result.player_id)
            .values(
                elo=Player.elo + elo_change,
                matches_played=Player.matches_played + 1,
                wins=Player.wins + (1 if is_win else 0),
                losses=Player.losses + (0 if is_win else 1)
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(Deck)
            .where(Deck.id == result.deck_id)
            .values(
                elo=Deck.elo + deck_elo_change,
                games_played=Deck.games_played + 1,
                wins=Deck.wins + (1 if is_win else 0)
            )
            .execution_options(synchronize_session=False)
        )

        new_elo = (await session.execute(
            select(Player.elo).where(Player.id == result.player_id)
        )).scalar_one()

        result.elo_change = elo_change
        result.deck_elo_change = deck_elo_change

        session.add(EloHistory(
            player_id=result.player_id,
            deck_id=result.deck_id,
            match_id=match.id,
            old_elo=new_elo - elo_change,
            new_elo=new_elo,
            elo_change=elo_change,
            k_factor=EloCalculator.get_k_factor(result.games_before),
            placement=result.placement,
            recorded_at=utc_now()
        ))

    async def validate_result(self, match_id: int, player_id: int) -> MatchResult:
        """
        Confirm the recorded placements for the player's own row and commit
        their rating change.

        Commitment is per player: other rows may still be pending or
        challenged. A row is processed at most once.

        Raises:
            NotFoundError: Match does not exist
            PermissionDeniedError: Player has no row in this match
            StateError: Placements not submitted yet
            AlreadyRespondedError: Row already validated or challenged
        """
        async with self.db.atomic("validate_result") as session:
            claimed = await session.execute(
                update(MatchResult)
                .where(
                    MatchResult.match_id == match_id,
                    MatchResult.player_id == player_id,
                    MatchResult.validated == False,
                    MatchResult.challenged == False,
                    MatchResult.placement.is_not(None)
                )
                .values(validated=True, validated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                await self._explain_unclaimed_row(session, match_id, player_id)

            match = await self._load_match(session, match_id)
            result = match.get_result(player_id)

            await self._commit_rating(session, match, result)
            completed = await self._complete_if_resolved(session, match_id)

            self.db.log_activity(session, player_id, 'match_validate', {
                'match_id': match_id, 'elo_change': result.elo_change
            })

        self.logger.info(
            f"Player {player_id} validated Match {match_id}: placement {result.placement}, "
            f"elo {EloCalculator.format_elo_change(result.elo_change)}, "
            f"deck elo {EloCalculator.format_elo_change(result.deck_elo_change)}"
        )
        await self._publish_response(match_id, result, completed)
        return result

    async def challenge_result(self, match_id: int, player_id: int, reason: str) -> MatchResult:
        """
        Dispute the recorded placements instead of validating them.

        The challenge is queued as a Report for admin review. It does not
        block other players and does not roll back ratings already applied.

        Raises:
            LeagueValidationError: Reason missing
            NotFoundError / PermissionDeniedError / StateError /
            AlreadyRespondedError: as validate_result
        """
        reason = (reason or "").strip()
        if not reason:
            raise LeagueValidationError(
                "Challenge reason is required",
                "Please explain why you are challenging these results."
            )

        async with self.db.atomic("challenge_result") as session:
            claimed = await session.execute(
                update(MatchResult)
                .where(
                    MatchResult.match_id == match_id,
                    MatchResult.player_id == player_id,
                    MatchResult.validated == False,
                    MatchResult.challenged == False,
                    MatchResult.placement.is_not(None)
                )
                .values(challenged=True, challenge_reason=reason, challenged_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                await self._explain_unclaimed_row(session, match_id, player_id)

            match = await self._load_match(session, match_id)
            result = match.get_result(player_id)

            reported_player_id = match.submitted_by if match.submitted_by != player_id else None
            session.add(Report(
                reporter_id=player_id,
                reported_player_id=reported_player_id,
                match_id=match_id,
                reason=CHALLENGE_REPORT_REASON,
                details=reason
            ))
            completed = await self._complete_if_resolved(session, match_id)

            self.db.log_activity(session, player_id, 'match_challenge', {'match_id': match_id})

        self.logger.warning(f"Player {player_id} challenged Match {match_id}: {reason}")
        await self._publish_response(match_id, result, completed)
        return result

    async def _publish_response(self, match_id: int, result: MatchResult, completed: bool):
        events = [ChangeEvent('match_results', 'update', match_id, record_to_dict(result))]
        if completed:
            self.logger.info(f"Match {match_id} completed")
            events.append(ChangeEvent('matches', 'update', match_id, {
                'id': match_id, 'status': MatchStatus.COMPLETED.value
            }))
        await self._publish(events)

    # ============================================================================
    # Queries
    # ============================================================================

    async def get_match(self, match_id: int) -> Optional[Match]:
        """Match with its results, players and decks"""
        async with self.db.get_session() as session:
            return await self._load_match(session, match_id)

    async def get_pending_validation(self, player_id: int) -> Optional[MatchResult]:
        """The player's placed row still waiting for their validation or challenge"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(MatchResult)
                .options(
                    selectinload(MatchResult.match)
                    .selectinload(Match.results)
                    .selectinload(MatchResult.player)
                )
                .where(
                    MatchResult.player_id == player_id,
                    MatchResult.placement.is_not(None),
                    MatchResult.validated == False,
                    MatchResult.challenged == False
                )
                .order_by(MatchResult.created_at.desc(), MatchResult.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_player_matches(self, player_id: int, limit: int = 20) -> List[MatchResult]:
        """The player's result rows, newest first, each with its match"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(MatchResult)
                .options(
                    selectinload(MatchResult.match)
                    .selectinload(Match.results)
                    .selectinload(MatchResult.player)
                )
                .where(MatchResult.player_id == player_id)
                .order_by(MatchResult.created_at.desc(), MatchResult.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def has_unresolved_match(self, player_id: int,
                                   session: Optional[AsyncSession] = None) -> bool:
        """True while the player has a match row they have not validated or challenged"""
        async with self._get_session_context(session) as sess:
            result = await sess.execute(
                select(
                    exists().where(and_(
                        MatchResult.player_id == player_id,
                        MatchResult.validated == False,
                        MatchResult.challenged == False
                    ))
                )
            )
            return bool(result.scalar())
