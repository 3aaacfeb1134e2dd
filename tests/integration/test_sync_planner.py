# ============================================================================
# File: tests/integration/test_sync_planner.py
# ============================================================================

import pytest
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock, AsyncMock
from sqlalchemy import select, func

from core.exceptions import CredentialsError
from models.league import LeagueMatchup, LeagueTeam
from models.snapshot import HistoricalSnapshot
from models.sync_metadata import SyncMetadata
from schemas.imports import LeagueRef
from ingestion.providers.credentials import StaticCredentialStore
from ingestion.schedule import AnchoredSeasonSchedule
from ingestion.sync import IncrementalSyncPlanner

IN_SEASON = datetime(2024, 10, 10, 12, 0)  # week 6 of 2024
PRE_SEASON = datetime(2024, 8, 1, 12, 0)


async def add_snapshots(session_factory, league_id, seasons, record_count=10):
    async with session_factory() as session:
        for season in seasons:
            session.add(HistoricalSnapshot(
                league_id=league_id,
                season=season,
                payload={"season": season},
                fingerprint=f"fp-{season}",
                record_count=record_count,
            ))
        await session.commit()


async def add_matchups(session_factory, league_id, season, weeks):
    async with session_factory() as session:
        for week in weeks:
            session.add(LeagueMatchup(
                league_id=league_id,
                season=season,
                week=week,
                matchup_period=week,
                home_team_id=1,
                away_team_id=2,
                home_score=100.0,
                away_score=90.0,
                is_complete=True,
            ))
        await session.commit()


async def add_sync_metadata(session_factory, league_id, synced_at, season=None, week=None):
    async with session_factory() as session:
        session.add(SyncMetadata(
            league_id=league_id,
            last_synced_at=synced_at,
            last_synced_season=season,
            last_synced_week=week,
        ))
        await session.commit()


@pytest.fixture
def schedule():
    return AnchoredSeasonSchedule(
        sport="ffl",
        start_dates={2024: date(2024, 9, 5)},
        regular_season_weeks=18
    )


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.start_import = AsyncMock(return_value="imp_sync")
    return orchestrator


@pytest.fixture
def planner(session_factory, mock_orchestrator, credential_store, provider, schedule):
    return IncrementalSyncPlanner(
        session_factory,
        mock_orchestrator,
        credential_store,
        client_factory=provider.factory,
        schedule=schedule,
        lookback_years=5,
        freshness_hours=24,
        week_delay=0
    )


class TestSyncRequirements:

    @pytest.mark.asyncio
    async def test_missing_seasons_within_lookback(self, planner, session_factory, league):
        await add_snapshots(session_factory, league.league_id, [2019, 2021, 2023])

        requirements = await planner.get_sync_requirements(league.league_id, now=IN_SEASON)

        assert requirements.current_season == 2024
        assert requirements.current_week == 6
        assert requirements.missing_seasons == [2020, 2022]
        assert requirements.missing_weeks == [1, 2, 3, 4, 5, 6]
        assert requirements.estimated_missing_records == 2 * 200 + 6 * 20

    @pytest.mark.asyncio
    async def test_current_season_is_never_a_missing_season(self, planner, session_factory, league):
        await add_snapshots(session_factory, league.league_id, range(2019, 2024))

        requirements = await planner.get_sync_requirements(league.league_id, now=IN_SEASON)

        assert requirements.missing_seasons == []
        assert 2024 not in requirements.missing_seasons

    @pytest.mark.asyncio
    async def test_missing_weeks_of_current_season(self, planner, session_factory, league):
        await add_snapshots(session_factory, league.league_id, range(2019, 2024))
        await add_matchups(session_factory, league.league_id, 2024, [1, 2, 3])

        requirements = await planner.get_sync_requirements(league.league_id, now=IN_SEASON)

        assert requirements.missing_weeks == [4, 5, 6]

    @pytest.mark.asyncio
    async def test_no_weeks_before_season_starts(self, planner, league):
        requirements = await planner.get_sync_requirements(league.league_id, now=PRE_SEASON)

        assert requirements.current_season == 2024
        assert requirements.missing_weeks == []

    @pytest.mark.asyncio
    async def test_current_season_can_be_excluded(self, planner, league):
        requirements = await planner.get_sync_requirements(
            league.league_id, include_current_season=False, now=IN_SEASON
        )
        assert requirements.missing_weeks == []

    @pytest.mark.asyncio
    async def test_force_refresh_returns_everything(self, planner, session_factory, league):
        await add_snapshots(session_factory, league.league_id, range(2019, 2024))
        await add_matchups(session_factory, league.league_id, 2024, [1, 2, 3])

        requirements = await planner.get_sync_requirements(
            league.league_id, force_refresh=True, now=IN_SEASON
        )

        assert requirements.missing_seasons == [2019, 2020, 2021, 2022, 2023]
        assert requirements.missing_weeks == [1, 2, 3, 4, 5, 6]


class TestSyncIncremental:

    @pytest.mark.asyncio
    async def test_delegates_seasons_and_syncs_weeks(
        self, planner, mock_orchestrator, provider, payloads, session_factory, league
    ):
        provider.seasons[2024] = payloads.season(2024, weeks=6)
        await add_snapshots(session_factory, league.league_id, [2019, 2020, 2021, 2023])

        result = await planner.sync_incremental(league, now=IN_SEASON)

        assert result.import_id == "imp_sync"
        assert result.seasons_scheduled == [2022]
        mock_orchestrator.start_import.assert_awaited_once_with(
            league, 2022, 2022, seasons=[2022], force=False
        )
        assert result.weeks_synced == [1, 2, 3, 4, 5, 6]
        assert result.weeks_failed == []
        assert result.matchups_upserted == 12

        async with session_factory() as session:
            matchups = (await session.execute(
                select(func.count()).select_from(LeagueMatchup).where(LeagueMatchup.season == 2024)
            )).scalar_one()
            teams = (await session.execute(
                select(func.count()).select_from(LeagueTeam).where(LeagueTeam.season == 2024)
            )).scalar_one()
            metadata = await session.get(SyncMetadata, league.league_id)
        assert matchups == 12
        assert teams == 4
        assert metadata.last_synced_season == 2024
        assert metadata.last_synced_week == 6

    @pytest.mark.asyncio
    async def test_week_sync_is_idempotent(self, planner, provider, payloads, session_factory, league):
        provider.seasons[2024] = payloads.season(2024, weeks=6)
        await add_snapshots(session_factory, league.league_id, range(2019, 2024))

        await planner.sync_incremental(league, force_refresh=False, now=IN_SEASON)
        requirements = await planner.get_sync_requirements(
            league.league_id, force_refresh=True, now=IN_SEASON
        )
        requirements.missing_seasons = []
        await planner.sync_incremental(league, requirements=requirements, now=IN_SEASON)

        async with session_factory() as session:
            matchups = (await session.execute(select(func.count()).select_from(LeagueMatchup))).scalar_one()
        assert matchups == 12

    @pytest.mark.asyncio
    async def test_failed_week_holds_back_watermark(self, planner, provider, payloads, session_factory, league):
        provider.seasons[2024] = payloads.season(2024, weeks=6)
        provider.failing_weeks = {4}
        await add_snapshots(session_factory, league.league_id, range(2019, 2024))

        result = await planner.sync_incremental(league, now=IN_SEASON)

        assert result.weeks_failed == [4]
        assert result.weeks_synced == [1, 2, 3, 5, 6]
        async with session_factory() as session:
            metadata = await session.get(SyncMetadata, league.league_id)
        assert metadata.last_synced_week == 3

    @pytest.mark.asyncio
    async def test_weeks_need_credentials(self, session_factory, mock_orchestrator, provider, schedule, league):
        planner = IncrementalSyncPlanner(
            session_factory,
            mock_orchestrator,
            StaticCredentialStore(),
            client_factory=provider.factory,
            schedule=schedule,
            lookback_years=5,
            week_delay=0
        )
        await add_snapshots(session_factory, league.league_id, range(2019, 2024))

        with pytest.raises(CredentialsError):
            await planner.sync_incremental(league, now=IN_SEASON)

    @pytest.mark.asyncio
    async def test_pre_season_sync_only_schedules_seasons(self, planner, mock_orchestrator, provider, league):
        result = await planner.sync_incremental(league, now=PRE_SEASON)

        assert result.seasons_scheduled == [2019, 2020, 2021, 2022, 2023]
        assert result.weeks_synced == []
        assert provider.scoreboard_calls == []
        mock_orchestrator.start_import.assert_awaited_once()


class TestSyncNeeded:

    @pytest.mark.asyncio
    async def test_never_synced(self, planner, league):
        assert await planner.is_sync_needed(league.league_id, now=IN_SEASON) is True

    @pytest.mark.asyncio
    async def test_fresh_and_current(self, planner, session_factory, league):
        await add_sync_metadata(session_factory, league.league_id, IN_SEASON - timedelta(hours=1), 2024, 6)
        assert await planner.is_sync_needed(league.league_id, now=IN_SEASON) is False

    @pytest.mark.asyncio
    async def test_stale(self, planner, session_factory, league):
        await add_sync_metadata(session_factory, league.league_id, IN_SEASON - timedelta(hours=25), 2024, 6)
        assert await planner.is_sync_needed(league.league_id, now=IN_SEASON) is True

    @pytest.mark.asyncio
    async def test_behind_current_week(self, planner, session_factory, league):
        await add_sync_metadata(session_factory, league.league_id, IN_SEASON - timedelta(hours=1), 2024, 5)
        assert await planner.is_sync_needed(league.league_id, now=IN_SEASON) is True

    @pytest.mark.asyncio
    async def test_fresh_before_season_starts(self, planner, session_factory, league):
        await add_sync_metadata(session_factory, league.league_id, PRE_SEASON - timedelta(hours=1), 2023)
        assert await planner.is_sync_needed(league.league_id, now=PRE_SEASON) is False


class TestSyncStats:

    @pytest.mark.asyncio
    async def test_stats_and_clear(self, planner, session_factory, league):
        await add_snapshots(session_factory, league.league_id, [2019, 2021, 2023], record_count=50)
        await add_matchups(session_factory, league.league_id, 2024, [1, 2])
        await add_snapshots(session_factory, "other-league", [2020])

        stats = await planner.get_sync_stats(league.league_id)

        assert stats.total_seasons == 3
        assert stats.oldest_season == 2019
        assert stats.newest_season == 2023
        assert stats.data_size == 150
        assert stats.total_matchups == 2
        assert stats.last_synced_at is None

        deleted = await planner.clear_historical_data(league.league_id)

        assert deleted["snapshots"] == 3
        assert deleted["matchups"] == 2
        stats = await planner.get_sync_stats(league.league_id)
        assert stats.total_seasons == 0
        assert stats.total_matchups == 0
        other = await planner.get_sync_stats("other-league")
        assert other.total_seasons == 1
