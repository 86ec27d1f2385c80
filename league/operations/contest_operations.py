"""
Contest Operations Module

Themed deckbuilding contests open for a fixed window. Each player may enter
once per contest, with a decklist link, a pasted list, or both.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from league.database.models import Player, Contest, ContestEntry, ContestStatus, utc_now
from league.utils.exceptions import (
    LeagueValidationError, NotFoundError, PermissionDeniedError, StateError
)
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


def to_naive_utc(moment: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC"""
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


class ContestOperations:
    """Contest creation and entry submission"""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    async def create_contest(self, admin_id: int, name: str, start_date: datetime,
                             end_date: datetime, theme: Optional[str] = None,
                             description: Optional[str] = None) -> Contest:
        """
        Create a contest. Admins only.

        Raises:
            LeagueValidationError: Blank name or start not before end
            PermissionDeniedError: Caller is not an admin
        """
        name = (name or "").strip()
        if not name:
            raise LeagueValidationError("Contest name is required", "Please name the contest.")
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
        if start_date >= end_date:
            raise LeagueValidationError(
                f"Contest window {start_date} - {end_date} is empty",
                "The contest must start before it ends."
            )

        async with self.db.atomic("create_contest") as session:
            admin = await session.get(Player, admin_id)
            if admin is None:
                raise NotFoundError("Player", admin_id)
            if not admin.is_admin:
                raise PermissionDeniedError(
                    f"Player {admin_id} is not an admin",
                    "Only admins can create contests."
                )

            contest = Contest(
                name=name,
                theme=(theme or "").strip() or None,
                description=description,
                start_date=start_date,
                end_date=end_date,
                created_by=admin_id
            )
            session.add(contest)
            await session.flush()
            self.db.log_activity(session, admin_id, 'contest_create', {'contest_id': contest.id})

        self.logger.info(f"Admin {admin_id} created Contest {contest.id} ({name})")
        return contest

    async def get_contest(self, contest_id: int) -> Contest:
        async with self.db.get_session() as session:
            contest = await session.get(Contest, contest_id)
            if contest is None:
                raise NotFoundError("Contest", contest_id)
            return contest

    async def get_contest_status(self, contest_id: int,
                                 now: Optional[datetime] = None) -> ContestStatus:
        contest = await self.get_contest(contest_id)
        return contest.status_at(to_naive_utc(now) if now else utc_now())

    async def submit_entry(self, contest_id: int, player_id: int,
                           decklist_url: Optional[str] = None,
                           decklist_text: Optional[str] = None,
                           now: Optional[datetime] = None) -> ContestEntry:
        """
        Enter a contest while it is active.

        Raises:
            LeagueValidationError: Neither a decklist link nor text given
            StateError: Contest not active, or player already entered
        """
        decklist_url = (decklist_url or "").strip() or None
        decklist_text = (decklist_text or "").strip() or None
        if decklist_url is None and decklist_text is None:
            raise LeagueValidationError(
                "Contest entry has no decklist",
                "Please provide a decklist link or paste your list."
            )

        moment = to_naive_utc(now) if now else utc_now()

        async with self.db.atomic("submit_entry") as session:
            contest = await session.get(Contest, contest_id)
            if contest is None:
                raise NotFoundError("Contest", contest_id)
            if await session.get(Player, player_id) is None:
                raise NotFoundError("Player", player_id)

            status = contest.status_at(moment)
            if status != ContestStatus.ACTIVE:
                raise StateError(
                    f"Contest {contest_id} is {status.value}",
                    "This contest is not accepting entries."
                )

            existing = await session.execute(
                select(ContestEntry.id).where(
                    ContestEntry.contest_id == contest_id,
                    ContestEntry.player_id == player_id
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise StateError(
                    f"Player {player_id} already entered Contest {contest_id}",
                    "You have already entered this contest."
                )

            entry = ContestEntry(
                contest_id=contest_id,
                player_id=player_id,
                decklist_url=decklist_url,
                decklist_text=decklist_text
            )
            session.add(entry)
            await session.flush()
            self.db.log_activity(session, player_id, 'contest_entry', {'contest_id': contest_id})

        self.logger.info(f"Player {player_id} entered Contest {contest_id}")
        return entry

    async def list_contests(self) -> List[Tuple[Contest, int]]:
        """Contests with their entry counts, latest end date first"""
        async with self.db.get_session() as session:
            entry_count = (
                select(func.count(ContestEntry.id))
                .where(ContestEntry.contest_id == Contest.id)
                .correlate(Contest)
                .scalar_subquery()
            )
            result = await session.execute(
                select(Contest, entry_count)
                .order_by(Contest.end_date.desc(), Contest.id.desc())
            )
            return [(contest, count) for contest, count in result.all()]

    async def list_entries(self, contest_id: int) -> List[ContestEntry]:
        """Entries of a contest with their players, newest first"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ContestEntry)
                .options(selectinload(ContestEntry.player))
                .where(ContestEntry.contest_id == contest_id)
                .order_by(ContestEntry.created_at.desc(), ContestEntry.id.desc())
            )
            return list(result.scalars().all())
