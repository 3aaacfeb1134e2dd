# ============================================================================
# File: tests/integration/test_import_orchestrator.py
# ============================================================================

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from sqlalchemy import select, func, update

from core.exceptions import ImportClaimError
from models.base import ImportStatus, SeasonStatus
from models.import_job import ImportJob
from models.league import LeagueMatchup, LeagueTeam, LeagueTransaction
from models.snapshot import HistoricalSnapshot
from models.sync_metadata import SyncMetadata
from schemas.imports import LeagueRef
from ingestion.events import (
    IMPORT_COMPLETED, IMPORT_FAILED, IMPORT_PAUSED, IMPORT_PROGRESS, IMPORT_SEASON_COMPLETED
)


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


async def run_job(orchestrator, league, start_year=2020, end_year=2022, **kwargs):
    import_id = await orchestrator.create_job(league, start_year, end_year, **kwargs)
    return await orchestrator.run_import(import_id)


@pytest.mark.asyncio
async def test_full_import(orchestrator, league, session_factory, event_bus):
    progress = await run_job(orchestrator, league)

    assert progress.status == ImportStatus.COMPLETED
    assert progress.completed_seasons == 3
    assert progress.percentage == 100.0
    assert progress.started_at is not None
    assert progress.completed_at is not None
    assert [s.status for s in progress.seasons] == [SeasonStatus.COMPLETED] * 3
    assert progress.seasons[0].matchups_imported == 4
    assert progress.seasons[0].players_imported == 4
    assert progress.seasons[0].transactions_imported == 2

    # 3 seasons x 2 weeks x 2 matchups
    assert await count_rows(session_factory, LeagueMatchup) == 12
    assert await count_rows(session_factory, LeagueTeam) == 12
    assert await count_rows(session_factory, LeagueTransaction) == 6
    assert await count_rows(session_factory, HistoricalSnapshot) == 3

    assert len(event_bus.of_type(IMPORT_SEASON_COMPLETED)) == 3
    completed = event_bus.of_type(IMPORT_COMPLETED)
    assert len(completed) == 1
    assert completed[0].data["status"] == "completed"

    async with session_factory() as session:
        metadata = await session.get(SyncMetadata, league.league_id)
    assert metadata.last_synced_season == 2022


@pytest.mark.asyncio
async def test_background_import(orchestrator, league):
    import_id = await orchestrator.start_import(league, 2020, 2022)
    progress = await orchestrator.wait(import_id)

    assert progress.status == ImportStatus.COMPLETED
    assert progress.completed_seasons == 3


@pytest.mark.asyncio
async def test_reimport_of_unchanged_data_writes_nothing(orchestrator, league, session_factory):
    await run_job(orchestrator, league)
    async with session_factory() as session:
        result = await session.execute(select(HistoricalSnapshot.id, HistoricalSnapshot.imported_at))
        before = sorted(result.all())

    progress = await run_job(orchestrator, league)

    assert progress.status == ImportStatus.COMPLETED
    assert all(s.skipped_unchanged for s in progress.seasons)
    assert await count_rows(session_factory, LeagueMatchup) == 12
    async with session_factory() as session:
        result = await session.execute(select(HistoricalSnapshot.id, HistoricalSnapshot.imported_at))
        assert sorted(result.all()) == before


@pytest.mark.asyncio
async def test_season_failure_is_isolated_and_resumable(orchestrator, league, provider, session_factory):
    provider.failing_seasons = {2021}

    progress = await run_job(orchestrator, league)

    assert progress.status == ImportStatus.COMPLETED
    statuses = {s.season: s.status for s in progress.seasons}
    assert statuses == {
        2020: SeasonStatus.COMPLETED,
        2021: SeasonStatus.FAILED,
        2022: SeasonStatus.COMPLETED,
    }
    assert progress.completed_seasons == 2
    assert progress.errors[0].season == 2021
    assert progress.errors[0].error_type == "NetworkError"
    assert await count_rows(session_factory, HistoricalSnapshot) == 2

    # Provider recovers; only the failed season is fetched again
    provider.failing_seasons = set()
    provider.league_calls = []
    await orchestrator.resume_import(progress.import_id)
    progress = await orchestrator.wait(progress.import_id)

    assert provider.league_calls == [2021]
    assert progress.completed_seasons == 3
    assert await count_rows(session_factory, HistoricalSnapshot) == 3


@pytest.mark.asyncio
async def test_resume_starts_at_first_unfinished_season(orchestrator, league, provider, session_factory):
    """
    Resume Test:
    1. Job was paused with 2020 done, 2021 failed and 2022 pending
    2. Resume must not touch 2020
    """
    async with session_factory() as session:
        session.add(ImportJob(
            id="imp_seeded",
            league_id=league.league_id,
            provider_league_id=league.provider_league_id,
            credentials_ref=league.credentials_ref,
            start_year=2020,
            end_year=2022,
            status=ImportStatus.PAUSED,
            seasons=[
                {"season": 2020, "status": "completed", "matchups_imported": 4},
                {"season": 2021, "status": "failed", "error": "Provider unavailable"},
                {"season": 2022, "status": "pending"},
            ],
            errors=[],
            total_seasons=3,
            completed_seasons=1,
        ))
        await session.commit()

    await orchestrator.resume_import("imp_seeded")
    progress = await orchestrator.wait("imp_seeded")

    assert provider.league_calls == [2021, 2022]
    assert progress.status == ImportStatus.COMPLETED
    assert progress.completed_seasons == 3
    assert progress.seasons[1].error is None


@pytest.mark.asyncio
async def test_resume_of_finished_job_is_a_no_op(orchestrator, league, provider):
    progress = await run_job(orchestrator, league)
    provider.league_calls = []

    resumed = await orchestrator.resume_import(progress.import_id)

    assert resumed.status == ImportStatus.COMPLETED
    assert provider.league_calls == []


@pytest.mark.asyncio
async def test_forced_reimport_refetches_completed_seasons(orchestrator, league, provider):
    progress = await run_job(orchestrator, league)
    provider.league_calls = []

    await orchestrator.resume_import(progress.import_id, force=True)
    progress = await orchestrator.wait(progress.import_id)

    assert provider.league_calls == [2020, 2021, 2022]
    assert progress.status == ImportStatus.COMPLETED
    assert not any(s.skipped_unchanged for s in progress.seasons)


@pytest.mark.asyncio
async def test_season_without_matchups_fails_validation(orchestrator, league, provider, session_factory):
    provider.seasons[2021]["matchups"] = []

    progress = await run_job(orchestrator, league)

    season = progress.seasons[1]
    assert season.status == SeasonStatus.FAILED
    assert "No matchups found" in season.error
    assert progress.errors[0].error_type == "SeasonValidationError"
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(HistoricalSnapshot).where(HistoricalSnapshot.season == 2021)
        )
        assert result.scalar_one() == 0


@pytest.mark.asyncio
async def test_failed_week_becomes_warning(orchestrator, league, provider, session_factory):
    provider.failing_weeks = {2}

    progress = await run_job(orchestrator, league, 2020, 2020)

    season = progress.seasons[0]
    assert season.status == SeasonStatus.COMPLETED
    assert any("Failed to fetch week 2" in w for w in season.warnings)
    assert season.matchups_imported == 2
    assert await count_rows(session_factory, LeagueMatchup) == 2


@pytest.mark.asyncio
async def test_missing_credentials_fails_job(orchestrator, session_factory, provider, event_bus):
    league = LeagueRef(league_id="league-nocreds", provider_league_id=777, credentials_ref="unknown")

    progress = await run_job(orchestrator, league)

    assert progress.status == ImportStatus.FAILED
    assert progress.errors[0].error_type == "CredentialsError"
    assert provider.league_calls == []
    assert len(event_bus.of_type(IMPORT_FAILED)) == 1


@pytest.mark.asyncio
async def test_cancel_pauses_before_next_season(orchestrator, league, provider, event_bus):
    import_id = await orchestrator.create_job(league, 2020, 2022)
    assert await orchestrator.cancel_import(import_id) is True

    progress = await orchestrator.run_import(import_id)

    assert progress.status == ImportStatus.PAUSED
    assert progress.cancel_requested is False
    assert progress.completed_at is None
    assert provider.league_calls == []
    assert len(event_bus.of_type(IMPORT_PAUSED)) == 1

    await orchestrator.resume_import(import_id)
    progress = await orchestrator.wait(import_id)
    assert progress.status == ImportStatus.COMPLETED
    assert progress.completed_seasons == 3


@pytest.mark.asyncio
async def test_cancel_of_finished_job_is_rejected(orchestrator, league):
    progress = await run_job(orchestrator, league)
    assert await orchestrator.cancel_import(progress.import_id) is False
    assert await orchestrator.cancel_import("imp_missing") is False


@pytest.mark.asyncio
async def test_live_lease_blocks_second_runner(orchestrator, league, session_factory, provider):
    import_id = await orchestrator.create_job(league, 2020, 2020)
    async with session_factory() as session:
        await session.execute(
            update(ImportJob)
            .where(ImportJob.id == import_id)
            .values(
                status=ImportStatus.RUNNING,
                lease_owner="runner_other",
                lease_expires_at=datetime.utcnow() + timedelta(hours=1),
            )
        )
        await session.commit()

    with pytest.raises(ImportClaimError):
        await orchestrator.run_import(import_id)
    with pytest.raises(ImportClaimError):
        await orchestrator.resume_import(import_id)
    assert provider.league_calls == []


@pytest.mark.asyncio
async def test_expired_lease_can_be_taken_over(orchestrator, league, session_factory):
    import_id = await orchestrator.create_job(league, 2020, 2020)
    async with session_factory() as session:
        await session.execute(
            update(ImportJob)
            .where(ImportJob.id == import_id)
            .values(
                status=ImportStatus.RUNNING,
                lease_owner="runner_crashed",
                lease_expires_at=datetime.utcnow() - timedelta(minutes=1),
            )
        )
        await session.commit()

    progress = await orchestrator.run_import(import_id)

    assert progress.status == ImportStatus.COMPLETED
    async with session_factory() as session:
        job = await session.get(ImportJob, import_id)
    assert job.lease_owner is None


@pytest.mark.asyncio
async def test_get_progress(orchestrator, league):
    import_id = await orchestrator.create_job(league, 2020, 2022)

    progress = await orchestrator.get_progress(import_id)

    assert progress.status == ImportStatus.PENDING
    assert progress.total_seasons == 3
    assert await orchestrator.get_progress("imp_missing") is None


@pytest.mark.asyncio
async def test_progress_events_carry_job_view(orchestrator, league, event_bus):
    await run_job(orchestrator, league)

    progress_events = event_bus.of_type(IMPORT_PROGRESS)
    # One before and one after each season
    assert len(progress_events) == 6
    first, last = progress_events[0].data, progress_events[-1].data
    assert first["status"] == "running"
    assert first["current_season"] == 2020
    assert first["percentage"] == 0.0
    assert [c["season"] for c in first["checkpoints"]] == [2020, 2021, 2022]
    assert last["percentage"] == 100.0
    assert last["completed_seasons"] == 3


@pytest.mark.asyncio
async def test_rejected_credentials_fail_job(orchestrator, league, provider, session_factory, event_bus):
    provider.rejected_seasons = {2020, 2021, 2022}

    progress = await run_job(orchestrator, league)

    assert progress.status == ImportStatus.FAILED
    assert provider.league_calls == [2020]
    assert [s.status for s in progress.seasons] == [
        SeasonStatus.FAILED, SeasonStatus.PENDING, SeasonStatus.PENDING
    ]
    assert len(progress.errors) == 1
    assert progress.errors[0].error_type == "AuthenticationError"
    assert progress.errors[0].season == 2020
    assert len(event_bus.of_type(IMPORT_FAILED)) == 1
    assert event_bus.of_type(IMPORT_COMPLETED) == []
    assert await count_rows(session_factory, HistoricalSnapshot) == 0

    async with session_factory() as session:
        job = await session.get(ImportJob, progress.import_id)
    assert job.lease_owner is None
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_backfill_keeps_newer_sync_watermark(orchestrator, league, session_factory):
    async with session_factory() as session:
        session.add(SyncMetadata(
            league_id=league.league_id,
            last_synced_at=datetime.utcnow(),
            last_synced_season=2024,
            last_synced_week=5,
        ))
        await session.commit()

    await run_job(orchestrator, league)

    async with session_factory() as session:
        metadata = await session.get(SyncMetadata, league.league_id)
    assert metadata.last_synced_season == 2024
    assert metadata.last_synced_week == 5
    assert metadata.total_seasons == 3
    assert metadata.total_matchups == 12


@pytest.mark.asyncio
async def test_changed_season_skips_known_transactions(orchestrator, league, provider, session_factory):
    await run_job(orchestrator, league, 2020, 2020)
    provider.seasons[2020]["matchups"][0]["home"]["totalPoints"] = 150.0
    provider.seasons[2020]["transactions"][0]["bidAmount"] = 40
    orchestrator.dedup.season_data_exists = AsyncMock(wraps=orchestrator.dedup.season_data_exists)

    progress = await run_job(orchestrator, league, 2020, 2020)

    season = progress.seasons[0]
    assert season.status == SeasonStatus.COMPLETED
    assert season.skipped_unchanged is False
    assert season.transactions_imported == 2
    orchestrator.dedup.season_data_exists.assert_awaited_once_with(league.league_id, 2020)

    async with session_factory() as session:
        top_score = (await session.execute(select(func.max(LeagueMatchup.home_score)))).scalar_one()
        bids = (await session.execute(
            select(LeagueTransaction.bid_amount).order_by(LeagueTransaction.transaction_id)
        )).scalars().all()
    assert top_score == 150.0
    assert bids == [5.0, 5.0]

    # A forced re-import rewrites stored transactions too
    await orchestrator.resume_import(progress.import_id, force=True)
    await orchestrator.wait(progress.import_id)

    async with session_factory() as session:
        bids = (await session.execute(
            select(LeagueTransaction.bid_amount).order_by(LeagueTransaction.transaction_id)
        )).scalars().all()
    assert bids == [40.0, 5.0]
