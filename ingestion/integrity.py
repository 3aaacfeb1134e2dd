"""
Data integrity auditing for imported league history.

validate_import is read-only: six independent checks run concurrently on
their own sessions and report typed issues. fix_common_issues is the only
writer and touches matchup rows only.
"""

from typing import Dict, List, Optional, Tuple
from datetime import datetime
from sqlalchemy import select, delete, update, func, and_, or_, exists
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import asyncio
import logging

from core.config import settings
from models.league import (
    LeagueTeam, LeaguePlayer, LeaguePlayerStats, LeagueMatchup, LeagueTransaction
)
from models.snapshot import HistoricalSnapshot
from schemas.imports import (
    IntegrityIssue, IntegrityCheckResult, ImportStatistics, FixResult,
    IssueKind, IssueCategory
)
from ingestion.dedup import matchup_group_columns, redundant_matchup_ids

logger = logging.getLogger(__name__)

VALID_POSITIONS = {"QB", "RB", "WR", "TE", "K", "D/ST", "DEF", "FLEX", "BENCH", "IR"}
EARLIEST_TRANSACTION_DATE = datetime(2000, 1, 1)
REGULAR_SEASON_WEEKS_ESTIMATE = 13
COMPLETENESS_THRESHOLD = 0.8


def _issue(kind, category, description, affected, details=None) -> IntegrityIssue:
    return IntegrityIssue(
        type=kind,
        category=category,
        description=description,
        affected_records=affected,
        details=details,
    )


def _team_exists(team_column):
    return exists().where(
        LeagueTeam.league_id == LeagueMatchup.league_id,
        LeagueTeam.season == LeagueMatchup.season,
        LeagueTeam.external_team_id == team_column,
    )


def orphaned_matchup_filter():
    """Matchups whose home or away team has no team row in the same league season"""
    return or_(~_team_exists(LeagueMatchup.home_team_id), ~_team_exists(LeagueMatchup.away_team_id))


class DataIntegrityChecker:
    """
    Audit stored league data and apply bounded remediation.

    A check that raises is logged and listed in failed_checks; the
    remaining checks still report.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        max_matchup_score: Optional[float] = None,
        player_points_range: Optional[Tuple[float, float]] = None,
        default_matchup_periods: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.max_matchup_score = max_matchup_score or settings.MAX_MATCHUP_SCORE
        self.player_points_range = player_points_range or (
            settings.MIN_PLAYER_SEASON_POINTS, settings.MAX_PLAYER_SEASON_POINTS
        )
        self.default_matchup_periods = default_matchup_periods or settings.DEFAULT_MATCHUP_PERIODS

    # ===== Audit =====

    async def validate_import(self, league_id: str) -> IntegrityCheckResult:
        logger.info(f"Running integrity check for league {league_id}")

        checks = {
            "matchups": self.check_matchup_integrity,
            "players": self.check_player_integrity,
            "scores": self.check_score_integrity,
            "season_continuity": self.check_season_continuity,
            "teams": self.check_team_integrity,
            "transactions": self.check_transaction_integrity,
        }
        outcomes = await asyncio.gather(
            *(self._run_check(check, league_id) for check in checks.values()),
            return_exceptions=True
        )

        issues: List[IntegrityIssue] = []
        failed_checks: List[str] = []
        for name, outcome in zip(checks, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Integrity check '{name}' failed for league {league_id}: {outcome}")
                failed_checks.append(name)
            else:
                issues.extend(outcome)

        stats = await self.get_import_stats(league_id)
        result = IntegrityCheckResult(
            league_id=league_id,
            valid=not any(i.type == IssueKind.ERROR for i in issues),
            issues=issues,
            stats=stats,
            recommendations=self._recommendations(issues, stats),
            failed_checks=failed_checks,
        )
        logger.info(
            f"Integrity check for league {league_id}: {result.error_count} errors, "
            f"{result.warning_count} warnings, {len(failed_checks)} checks failed"
        )
        return result

    async def _run_check(self, check, league_id: str) -> List[IntegrityIssue]:
        async with self.session_factory() as session:
            return await check(session, league_id)

    @staticmethod
    def _recommendations(issues: List[IntegrityIssue], stats: ImportStatistics) -> List[str]:
        categories = {i.category for i in issues}
        recommendations = []
        if any(i.type == IssueKind.ERROR for i in issues):
            recommendations.append("Critical issues found - consider re-importing affected seasons")
        if stats.completeness < COMPLETENESS_THRESHOLD:
            recommendations.append(
                "Data completeness below 80% - check for missing seasons or incomplete imports"
            )
        if IssueCategory.DUPLICATES in categories:
            recommendations.append("Run deduplication service to clean up duplicate records")
        if IssueCategory.MISSING_DATA in categories:
            recommendations.append("Use incremental sync to fill in missing data")
        return recommendations

    # ===== Checks =====

    async def check_matchup_integrity(self, session: AsyncSession, league_id: str) -> List[IntegrityIssue]:
        issues = []

        groups = (
            select(func.count().label("n"))
            .where(LeagueMatchup.league_id == league_id)
            .group_by(*matchup_group_columns())
            .having(func.count() > 1)
            .subquery()
        )
        row = (await session.execute(
            select(func.count(), func.coalesce(func.sum(groups.c.n - 1), 0)).select_from(groups)
        )).one()
        group_count, extra_rows = row[0] or 0, int(row[1] or 0)
        if group_count:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.DUPLICATES,
                f"Found {extra_rows} duplicate matchups",
                extra_rows,
                {"duplicate_groups": group_count}
            ))

        missing_scores = await self._count(session, select(func.count(LeagueMatchup.id)).where(
            LeagueMatchup.league_id == league_id,
            LeagueMatchup.is_complete.is_(True),
            or_(LeagueMatchup.home_score.is_(None), LeagueMatchup.away_score.is_(None))
        ))
        if missing_scores:
            issues.append(_issue(
                IssueKind.WARNING, IssueCategory.INCOMPLETE_DATA,
                f"{missing_scores} completed matchups missing scores",
                missing_scores
            ))

        orphaned = await self._count(session, select(func.count(LeagueMatchup.id)).where(
            LeagueMatchup.league_id == league_id,
            orphaned_matchup_filter()
        ))
        if orphaned:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.ORPHANED_DATA,
                f"{orphaned} matchups reference non-existent teams",
                orphaned
            ))

        return issues

    async def check_player_integrity(self, session: AsyncSession, league_id: str) -> List[IntegrityIssue]:
        issues = []

        unnamed = await self._count(session, select(func.count(LeaguePlayer.id)).where(
            LeaguePlayer.league_id == league_id,
            or_(LeaguePlayer.name.is_(None), LeaguePlayer.name == "")
        ))
        if unnamed:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.MISSING_DATA,
                f"{unnamed} players have no name",
                unnamed
            ))

        result = await session.execute(
            select(LeaguePlayer.position, func.count(LeaguePlayer.id))
            .where(
                LeaguePlayer.league_id == league_id,
                LeaguePlayer.position.is_not(None),
                LeaguePlayer.position.not_in(sorted(VALID_POSITIONS))
            )
            .group_by(LeaguePlayer.position)
        )
        invalid_positions: Dict[str, int] = {pos: n for pos, n in result.all()}
        if invalid_positions:
            affected = sum(invalid_positions.values())
            issues.append(_issue(
                IssueKind.WARNING, IssueCategory.INVALID_DATA,
                f"{affected} players have invalid positions",
                affected,
                {"positions": sorted(invalid_positions)}
            ))

        duplicates = (
            select(func.count().label("n"))
            .where(LeaguePlayer.league_id == league_id)
            .group_by(LeaguePlayer.external_player_id)
            .having(func.count() > 1)
            .subquery()
        )
        extra = int((await session.execute(
            select(func.coalesce(func.sum(duplicates.c.n - 1), 0))
        )).scalar() or 0)
        if extra:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.DUPLICATES,
                f"Found {extra} duplicate player records",
                extra
            ))

        return issues

    async def check_score_integrity(self, session: AsyncSession, league_id: str) -> List[IntegrityIssue]:
        issues = []

        negative = await self._count(session, select(func.count(LeagueMatchup.id)).where(
            LeagueMatchup.league_id == league_id,
            or_(LeagueMatchup.home_score < 0, LeagueMatchup.away_score < 0)
        ))
        if negative:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.INVALID_DATA,
                f"{negative} matchups have negative scores",
                negative
            ))

        high = await self._count(session, select(func.count(LeagueMatchup.id)).where(
            LeagueMatchup.league_id == league_id,
            or_(LeagueMatchup.home_score > self.max_matchup_score,
                LeagueMatchup.away_score > self.max_matchup_score)
        ))
        if high:
            issues.append(_issue(
                IssueKind.WARNING, IssueCategory.SUSPICIOUS_DATA,
                f"{high} matchups with unusually high scores (>{self.max_matchup_score:g})",
                high
            ))

        low, top = self.player_points_range
        outliers = await self._count(session, select(func.count(LeaguePlayerStats.id)).where(
            LeaguePlayerStats.league_id == league_id,
            or_(LeaguePlayerStats.points < low, LeaguePlayerStats.points > top)
        ))
        if outliers:
            issues.append(_issue(
                IssueKind.WARNING, IssueCategory.SUSPICIOUS_DATA,
                f"{outliers} player season totals outside [{low:g}, {top:g}]",
                outliers
            ))

        return issues

    async def check_season_continuity(self, session: AsyncSession, league_id: str) -> List[IntegrityIssue]:
        issues = []

        result = await session.execute(
            select(HistoricalSnapshot.season, HistoricalSnapshot.payload)
            .where(HistoricalSnapshot.league_id == league_id)
            .order_by(HistoricalSnapshot.season)
        )
        snapshots = result.all()
        if not snapshots:
            return [_issue(
                IssueKind.ERROR, IssueCategory.MISSING_DATA,
                "No historical data found", 0
            )]

        seasons = sorted({s for s, _ in snapshots})
        gaps = [
            year
            for prev, nxt in zip(seasons, seasons[1:])
            for year in range(prev + 1, nxt)
        ]
        if gaps:
            issues.append(_issue(
                IssueKind.WARNING, IssueCategory.MISSING_DATA,
                f"Missing {len(gaps)} seasons: {', '.join(str(g) for g in gaps)}",
                len(gaps),
                {"missing_seasons": gaps}
            ))

        result = await session.execute(
            select(LeagueMatchup.season, LeagueMatchup.week)
            .where(LeagueMatchup.league_id == league_id)
            .distinct()
        )
        weeks_by_season: Dict[int, set] = {}
        for season, week in result.all():
            weeks_by_season.setdefault(season, set()).add(week)

        for season, payload in snapshots:
            expected = self._expected_weeks(payload)
            present = weeks_by_season.get(season, set())
            missing = [w for w in range(1, expected + 1) if w not in present]
            if missing:
                issues.append(_issue(
                    IssueKind.WARNING, IssueCategory.INCOMPLETE_DATA,
                    f"Season {season} missing weeks: {', '.join(str(w) for w in missing)}",
                    len(missing),
                    {"season": season, "missing_weeks": missing}
                ))

        return issues

    def _expected_weeks(self, payload: Optional[dict]) -> int:
        """Matchup period count from the stored league settings, else the default"""
        try:
            count = payload["league"]["settings"]["scheduleSettings"]["matchupPeriodCount"]
            return int(count) if count else self.default_matchup_periods
        except (KeyError, TypeError, ValueError):
            return self.default_matchup_periods

    async def check_team_integrity(self, session: AsyncSession, league_id: str) -> List[IntegrityIssue]:
        issues = []

        unnamed = await self._count(session, select(func.count(LeagueTeam.id)).where(
            LeagueTeam.league_id == league_id,
            or_(LeagueTeam.name.is_(None), LeagueTeam.name == "")
        ))
        if unnamed:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.MISSING_DATA,
                f"{unnamed} teams have no name",
                unnamed
            ))

        negative = await self._count(session, select(func.count(LeagueTeam.id)).where(
            LeagueTeam.league_id == league_id,
            or_(LeagueTeam.wins < 0, LeagueTeam.losses < 0, LeagueTeam.ties < 0)
        ))
        if negative:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.INVALID_DATA,
                f"{negative} teams have negative win/loss/tie records",
                negative
            ))

        duplicates = (
            select(func.count().label("n"))
            .where(LeagueTeam.league_id == league_id)
            .group_by(LeagueTeam.season, LeagueTeam.external_team_id)
            .having(func.count() > 1)
            .subquery()
        )
        extra = int((await session.execute(
            select(func.coalesce(func.sum(duplicates.c.n - 1), 0))
        )).scalar() or 0)
        if extra:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.DUPLICATES,
                f"Found {extra} duplicate team records",
                extra
            ))

        return issues

    async def check_transaction_integrity(self, session: AsyncSession, league_id: str) -> List[IntegrityIssue]:
        issues = []

        bad_dates = await self._count(session, select(func.count(LeagueTransaction.id)).where(
            LeagueTransaction.league_id == league_id,
            or_(
                LeagueTransaction.transaction_date < EARLIEST_TRANSACTION_DATE,
                LeagueTransaction.transaction_date > datetime.utcnow()
            )
        ))
        if bad_dates:
            issues.append(_issue(
                IssueKind.WARNING, IssueCategory.INVALID_DATA,
                f"{bad_dates} transactions have invalid dates",
                bad_dates
            ))

        duplicates = (
            select(func.count().label("n"))
            .where(LeagueTransaction.league_id == league_id)
            .group_by(LeagueTransaction.season, LeagueTransaction.transaction_id)
            .having(func.count() > 1)
            .subquery()
        )
        extra = int((await session.execute(
            select(func.coalesce(func.sum(duplicates.c.n - 1), 0))
        )).scalar() or 0)
        if extra:
            issues.append(_issue(
                IssueKind.ERROR, IssueCategory.DUPLICATES,
                f"Found {extra} duplicate transactions",
                extra
            ))

        return issues

    # ===== Statistics =====

    async def get_import_stats(self, league_id: str) -> ImportStatistics:
        async with self.session_factory() as session:
            result = await session.execute(
                select(HistoricalSnapshot.season)
                .where(HistoricalSnapshot.league_id == league_id)
                .distinct()
                .order_by(HistoricalSnapshot.season)
            )
            seasons = list(result.scalars().all())
            totals = {}
            for name, model in (
                ("matchups", LeagueMatchup),
                ("players", LeaguePlayer),
                ("transactions", LeagueTransaction),
                ("teams", LeagueTeam),
            ):
                totals[name] = await self._count(
                    session, select(func.count(model.id)).where(model.league_id == league_id)
                )

        # 13 regular-season weeks, teams / 2 matchups per week
        expected = REGULAR_SEASON_WEEKS_ESTIMATE * totals["teams"] / 2
        completeness = min(1.0, totals["matchups"] / expected) if expected > 0 else 0.0

        return ImportStatistics(
            total_seasons=len(seasons),
            total_matchups=totals["matchups"],
            total_players=totals["players"],
            total_transactions=totals["transactions"],
            total_teams=totals["teams"],
            seasons=seasons,
            completeness=round(completeness, 4),
        )

    # ===== Remediation =====

    async def fix_common_issues(self, league_id: str) -> FixResult:
        """
        Repair matchup rows in one transaction:
        - delete duplicate matchups, keeping the lowest id per group
        - delete matchups whose teams do not resolve
        - clamp negative scores to zero
        """
        result = FixResult(league_id=league_id)

        async with self.session_factory() as session:
            async with session.begin():
                ids = list((await session.execute(
                    redundant_matchup_ids(league_id, keep_newest=False)
                )).scalars().all())
                if ids:
                    deleted = await session.execute(
                        delete(LeagueMatchup).where(LeagueMatchup.id.in_(ids))
                    )
                    result.duplicates_removed = deleted.rowcount or 0

                orphan_ids = list((await session.execute(
                    select(LeagueMatchup.id).where(
                        LeagueMatchup.league_id == league_id,
                        orphaned_matchup_filter()
                    )
                )).scalars().all())
                if orphan_ids:
                    deleted = await session.execute(
                        delete(LeagueMatchup).where(LeagueMatchup.id.in_(orphan_ids))
                    )
                    result.orphans_removed = deleted.rowcount or 0

                clamped_ids = set()
                for column in (LeagueMatchup.home_score, LeagueMatchup.away_score):
                    rows = (await session.execute(
                        select(LeagueMatchup.id).where(
                            and_(LeagueMatchup.league_id == league_id, column < 0)
                        )
                    )).scalars().all()
                    if rows:
                        await session.execute(
                            update(LeagueMatchup)
                            .where(LeagueMatchup.id.in_(list(rows)))
                            .values({column.key: 0.0, "updated_at": datetime.utcnow()})
                        )
                        clamped_ids.update(rows)
                result.scores_clamped = len(clamped_ids)

        logger.info(
            f"Fixed integrity issues for league {league_id}: {result.duplicates_removed} duplicates, "
            f"{result.orphans_removed} orphans, {result.scores_clamped} scores clamped"
        )
        return result

    @staticmethod
    async def _count(session: AsyncSession, stmt) -> int:
        result = await session.execute(stmt)
        return result.scalar() or 0
