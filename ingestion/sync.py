"""
Incremental sync planning.

Works out which seasons and current-season weeks a league is missing,
hands whole seasons to the ImportOrchestrator and syncs missing weeks
directly (scoreboard fetch + matchup upsert, no full season pipeline).
"""

from typing import Dict, List, Optional
from datetime import datetime, timedelta
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import async_sessionmaker
import asyncio
import logging

from core.config import settings
from core.exceptions import AuthenticationError, CredentialsError
from models.league import (
    LeagueTeam, LeaguePlayer, LeaguePlayerStats, LeagueMatchup, LeagueTransaction
)
from models.snapshot import HistoricalSnapshot
from models.sync_metadata import SyncMetadata
from schemas.imports import LeagueRef, SyncRequirement, SyncResult, SyncStats
from ingestion.loaders.league_loader import LeagueLoader
from ingestion.orchestrator import ImportOrchestrator
from ingestion.providers.credentials import CredentialStore
from ingestion.providers.espn_client import ProviderClientFactory, espn_client_factory
from ingestion.schedule import SeasonSchedule, default_schedule
from ingestion.transformers.league_transformer import LeagueTransformer

logger = logging.getLogger(__name__)

# Progress-bar estimates only
ESTIMATED_RECORDS_PER_SEASON = 200
ESTIMATED_RECORDS_PER_WEEK = 20


class IncrementalSyncPlanner:
    """
    Gap detection and lightweight week-level sync for one league at a time.

    The season window is [current_season - lookback_years, current_season):
    the in-progress season is never a missing season, it is covered week
    by week once it has started.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        orchestrator: ImportOrchestrator,
        credential_store: CredentialStore,
        client_factory: ProviderClientFactory = espn_client_factory,
        schedule: Optional[SeasonSchedule] = None,
        lookback_years: Optional[int] = None,
        freshness_hours: Optional[int] = None,
        week_delay: Optional[float] = None
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.credential_store = credential_store
        self.client_factory = client_factory
        self.schedule = schedule or default_schedule()
        self.lookback_years = lookback_years or settings.SYNC_LOOKBACK_YEARS
        self.freshness_hours = freshness_hours or settings.SYNC_FRESHNESS_HOURS
        self.week_delay = settings.SEASON_FETCH_DELAY if week_delay is None else week_delay

    async def get_sync_requirements(
        self,
        league_id: str,
        lookback_years: Optional[int] = None,
        include_current_season: bool = True,
        force_refresh: bool = False,
        now: Optional[datetime] = None
    ) -> SyncRequirement:
        now = now or datetime.utcnow()
        lookback_years = lookback_years or self.lookback_years
        current_season = self.schedule.current_season(now)
        current_week = self.schedule.current_week(now)

        async with self.session_factory() as session:
            result = await session.execute(
                select(HistoricalSnapshot.season)
                .where(HistoricalSnapshot.league_id == league_id)
                .distinct()
            )
            stored_seasons = set(result.scalars().all())

            stored_weeks = set()
            if include_current_season:
                result = await session.execute(
                    select(LeagueMatchup.week)
                    .where(LeagueMatchup.league_id == league_id, LeagueMatchup.season == current_season)
                    .distinct()
                )
                stored_weeks = set(result.scalars().all())

            metadata = await session.get(SyncMetadata, league_id)

        expected_seasons = range(current_season - lookback_years, current_season)
        missing_seasons = [
            s for s in expected_seasons if force_refresh or s not in stored_seasons
        ]

        missing_weeks: List[int] = []
        if include_current_season and self.schedule.has_started(now):
            missing_weeks = [
                w for w in range(1, current_week + 1) if force_refresh or w not in stored_weeks
            ]

        requirement = SyncRequirement(
            league_id=league_id,
            missing_seasons=missing_seasons,
            missing_weeks=missing_weeks,
            current_season=current_season,
            current_week=current_week,
            last_synced_at=metadata.last_synced_at if metadata else None,
            estimated_missing_records=(
                len(missing_seasons) * ESTIMATED_RECORDS_PER_SEASON
                + len(missing_weeks) * ESTIMATED_RECORDS_PER_WEEK
            ),
        )
        logger.info(
            f"Sync requirements for league {league_id}: {len(missing_seasons)} seasons, "
            f"{len(missing_weeks)} weeks missing"
        )
        return requirement

    async def sync_incremental(
        self,
        league: LeagueRef,
        requirements: Optional[SyncRequirement] = None,
        force_refresh: bool = False,
        now: Optional[datetime] = None
    ) -> SyncResult:
        """
        Delegate missing seasons to one import job and sync missing weeks here.

        Raises:
            CredentialsError: If weeks need syncing and the league has no credentials
            AuthenticationError: If the provider rejects the credentials
        """
        if requirements is None:
            requirements = await self.get_sync_requirements(
                league.league_id, force_refresh=force_refresh, now=now
            )

        result = SyncResult(league_id=league.league_id)

        if requirements.missing_seasons:
            seasons = requirements.missing_seasons
            result.import_id = await self.orchestrator.start_import(
                league, min(seasons), max(seasons), seasons=seasons, force=force_refresh
            )
            result.seasons_scheduled = list(seasons)

        if requirements.missing_weeks:
            await self._sync_weeks(league, requirements.current_season, requirements.missing_weeks, result)

        watermark = None
        if self.schedule.has_started(now):
            watermark = (
                min(result.weeks_failed) - 1 if result.weeks_failed else requirements.current_week
            )
        async with self.session_factory() as session:
            await LeagueLoader(session).upsert_sync_metadata(
                league.league_id,
                last_synced_season=requirements.current_season,
                last_synced_week=watermark or None
            )
            await session.commit()

        logger.info(
            f"Incremental sync for league {league.league_id}: "
            f"{len(result.seasons_scheduled)} seasons scheduled, {len(result.weeks_synced)} weeks synced, "
            f"{len(result.weeks_failed)} weeks failed"
        )
        return result

    async def _sync_weeks(self, league: LeagueRef, season: int, weeks: List[int], result: SyncResult):
        credentials = await self.credential_store.get_credentials(league)
        if credentials is None:
            raise CredentialsError(
                "No provider credentials found for league",
                context={"league_id": league.league_id, "credentials_ref": league.credentials_ref}
            )

        transformer = LeagueTransformer(league.league_id, season)

        async with self.client_factory(league, season, credentials) as client:
            league_data = await client.get_league()
            teams = transformer.transform_teams(league_data)
            async with self.session_factory() as session:
                async with session.begin():
                    await LeagueLoader(session).upsert_teams(teams)
            known_teams = {t.external_team_id for t in teams}

            for index, week in enumerate(weeks):
                try:
                    week_data = await client.get_scoreboard(week)
                    raw = [
                        m for m in week_data.get("schedule") or []
                        if m.get("matchupPeriodId", week) == week
                    ]
                    matchups = [
                        m for m in transformer.transform_matchups(raw)
                        if m.home_team_id in known_teams and m.away_team_id in known_teams
                    ]
                    async with self.session_factory() as session:
                        async with session.begin():
                            result.matchups_upserted += await LeagueLoader(session).upsert_matchups(matchups)
                    result.weeks_synced.append(week)
                except AuthenticationError:
                    raise
                except Exception as e:
                    logger.error(f"Failed to sync week {week} of {season} for league {league.league_id}: {e}")
                    result.weeks_failed.append(week)

                if index < len(weeks) - 1 and self.week_delay:
                    await asyncio.sleep(self.week_delay)

    async def is_sync_needed(self, league_id: str, now: Optional[datetime] = None) -> bool:
        """Never synced, stale beyond the freshness window, or behind the current week"""
        now = now or datetime.utcnow()
        async with self.session_factory() as session:
            metadata = await session.get(SyncMetadata, league_id)

        if metadata is None:
            return True

        if now - metadata.last_synced_at > timedelta(hours=self.freshness_hours):
            return True

        if self.schedule.has_started(now):
            current_season = self.schedule.current_season(now)
            current_week = self.schedule.current_week(now)
            if metadata.last_synced_season != current_season:
                return True
            if metadata.last_synced_week is None or metadata.last_synced_week < current_week:
                return True

        return False

    async def get_sync_stats(self, league_id: str) -> SyncStats:
        async with self.session_factory() as session:
            seasons_row = (await session.execute(
                select(
                    func.count(func.distinct(HistoricalSnapshot.season)),
                    func.min(HistoricalSnapshot.season),
                    func.max(HistoricalSnapshot.season),
                    func.coalesce(func.sum(HistoricalSnapshot.record_count), 0),
                ).where(HistoricalSnapshot.league_id == league_id)
            )).one()
            matchups = (await session.execute(
                select(func.count(LeagueMatchup.id)).where(LeagueMatchup.league_id == league_id)
            )).scalar() or 0
            players = (await session.execute(
                select(func.count(LeaguePlayer.id)).where(LeaguePlayer.league_id == league_id)
            )).scalar() or 0
            transactions = (await session.execute(
                select(func.count(LeagueTransaction.id)).where(LeagueTransaction.league_id == league_id)
            )).scalar() or 0
            metadata = await session.get(SyncMetadata, league_id)

        return SyncStats(
            league_id=league_id,
            total_seasons=seasons_row[0] or 0,
            oldest_season=seasons_row[1],
            newest_season=seasons_row[2],
            data_size=seasons_row[3] or 0,
            total_matchups=matchups,
            total_players=players,
            total_transactions=transactions,
            last_synced_at=metadata.last_synced_at if metadata else None,
            last_synced_season=metadata.last_synced_season if metadata else None,
            last_synced_week=metadata.last_synced_week if metadata else None,
        )

    async def clear_historical_data(self, league_id: str) -> Dict[str, int]:
        """Delete everything imported for a league (one transaction)"""
        tables = {
            "snapshots": HistoricalSnapshot,
            "matchups": LeagueMatchup,
            "player_stats": LeaguePlayerStats,
            "players": LeaguePlayer,
            "transactions": LeagueTransaction,
            "teams": LeagueTeam,
            "sync_metadata": SyncMetadata,
        }
        deleted: Dict[str, int] = {}
        async with self.session_factory() as session:
            async with session.begin():
                for name, model in tables.items():
                    result = await session.execute(delete(model).where(model.league_id == league_id))
                    deleted[name] = result.rowcount or 0

        logger.warning(f"Cleared historical data for league {league_id}: {deleted}")
        return deleted
