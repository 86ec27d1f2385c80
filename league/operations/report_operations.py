"""
Report Operations Module

Player reports (misconduct, disputed results) and their admin handling.
A report is pending until an admin resolves or dismisses it; challenged
match results arrive here as reports too.
"""

from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from league.database.models import Player, Match, Report, ReportStatus, utc_now
from league.utils.exceptions import (
    LeagueValidationError, NotFoundError, PermissionDeniedError, StateError
)
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


class ReportOperations:
    """Submission and moderation of player reports"""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    async def submit_report(self, reporter_id: int, reported_player_id: int, reason: str,
                            match_id: Optional[int] = None,
                            details: Optional[str] = None) -> Report:
        """
        File a report against another player.

        Raises:
            LeagueValidationError: Missing reason or self-report
            NotFoundError: Unknown reporter, reported player or match
        """
        reason = (reason or "").strip()
        if not reason:
            raise LeagueValidationError("Report reason is required", "Please give a reason for the report.")
        if reporter_id == reported_player_id:
            raise LeagueValidationError(
                f"Player {reporter_id} tried to report themselves",
                "You cannot report yourself."
            )

        async with self.db.atomic("submit_report") as session:
            for player_id in (reporter_id, reported_player_id):
                if await session.get(Player, player_id) is None:
                    raise NotFoundError("Player", player_id)
            if match_id is not None and await session.get(Match, match_id) is None:
                raise NotFoundError("Match", match_id)

            report = Report(
                reporter_id=reporter_id,
                reported_player_id=reported_player_id,
                match_id=match_id,
                reason=reason,
                details=(details or "").strip() or None,
                status=ReportStatus.PENDING
            )
            session.add(report)
            await session.flush()
            self.db.log_activity(session, reporter_id, 'report_submit', {
                'report_id': report.id, 'reported_player_id': reported_player_id
            })

        self.logger.info(f"Player {reporter_id} reported Player {reported_player_id} (Report {report.id})")
        return report

    async def list_reports(self, status: Optional[ReportStatus] = None,
                           limit: int = 100) -> List[Report]:
        """Reports newest first, optionally filtered by status"""
        async with self.db.get_session() as session:
            stmt = select(Report)
            if status is not None:
                stmt = stmt.where(Report.status == status)
            result = await session.execute(
                stmt.order_by(Report.created_at.desc(), Report.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def _require_admin(self, session: AsyncSession, admin_id: int) -> Player:
        admin = await session.get(Player, admin_id)
        if admin is None:
            raise NotFoundError("Player", admin_id)
        if not admin.is_admin:
            raise PermissionDeniedError(
                f"Player {admin_id} is not an admin",
                "Only admins can do that."
            )
        return admin

    async def _close_report(self, report_id: int, admin_id: int, status: ReportStatus) -> Report:
        async with self.db.atomic(f"{status.value}_report") as session:
            await self._require_admin(session, admin_id)

            now = utc_now()
            closed = await session.execute(
                update(Report)
                .where(Report.id == report_id, Report.status == ReportStatus.PENDING)
                .values(status=status, resolved_by=admin_id, resolved_at=now)
            )
            if closed.rowcount == 0:
                report = await session.get(Report, report_id)
                if report is None:
                    raise NotFoundError("Report", report_id)
                raise StateError(
                    f"Report {report_id} is already {report.status.value}",
                    "This report has already been handled."
                )

            self.db.log_activity(session, admin_id, f'report_{status.value}', {'report_id': report_id})
            result = await session.execute(
                select(Report)
                .where(Report.id == report_id)
                .execution_options(populate_existing=True)
            )
            report = result.scalar_one()

        self.logger.info(f"Admin {admin_id} marked Report {report_id} {status.value}")
        return report

    async def resolve_report(self, report_id: int, admin_id: int) -> Report:
        """Mark a pending report resolved. Admins only."""
        return await self._close_report(report_id, admin_id, ReportStatus.RESOLVED)

    async def dismiss_report(self, report_id: int, admin_id: int) -> Report:
        """Mark a pending report dismissed. Admins only."""
        return await self._close_report(report_id, admin_id, ReportStatus.DISMISSED)
