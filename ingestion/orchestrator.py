# ============================================================================
# File: ingestion/orchestrator.py
# Description: Multi-season league backfill with resume, cancel and lease
# ============================================================================
"""
Import Orchestrator - drives one league's multi-season backfill.

This module provides robust import orchestration with:
- Per-season failure isolation (one bad season never aborts the job)
- Durable job registry (import_jobs) with an in-memory cache only
- Resume from the first non-completed season
- Lease claimed with a status-guarded conditional UPDATE before running
- Cooperative cancellation checked between seasons
- Fingerprint short-circuit: unchanged seasons cause zero writes
- One database transaction per season
"""

from typing import Dict, Any, List, Optional, Callable
from datetime import datetime, timedelta
from sqlalchemy import select, update, or_, func
from sqlalchemy.ext.asyncio import async_sessionmaker
import asyncio
import logging
import time
import uuid

from core.config import settings
from core.exceptions import (
    AuthenticationError,
    CredentialsError,
    ImportClaimError,
    SeasonValidationError,
    DatabaseError
)
from models.base import ImportStatus, SeasonStatus
from models.import_job import ImportJob
from schemas.imports import LeagueRef, SeasonCheckpoint, ImportErrorRecord, ImportProgress
from schemas.league import SeasonRows
from ingestion.dedup import (
    DeduplicationService, EntityKind, deduplicate, fingerprint, validate_season_data
)
from ingestion.events import (
    EventBus, LoggingEventBus,
    IMPORT_PROGRESS, IMPORT_SEASON_COMPLETED, IMPORT_COMPLETED, IMPORT_FAILED, IMPORT_PAUSED
)
from ingestion.loaders.league_loader import LeagueLoader
from ingestion.progress import ProgressTracker
from ingestion.providers.credentials import CredentialStore, EspnCredentials
from ingestion.providers.espn_client import ProviderClient, ProviderClientFactory, espn_client_factory
from ingestion.transformers.league_transformer import LeagueTransformer

logger = logging.getLogger(__name__)

# Tracker items estimated per season (league + weeks + players + transactions)
ESTIMATED_ITEMS_PER_SEASON = 200


def new_import_id() -> str:
    return f"imp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class ImportOrchestrator:
    """
    Historical import orchestrator

    Responsibilities:
    - Create and persist import jobs
    - Fetch each season (league, weekly matchups, players, transactions)
    - Deduplicate, validate and fingerprint before any write
    - Persist a season atomically and checkpoint its status
    - Publish progress on the event bus
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        credential_store: CredentialStore,
        client_factory: ProviderClientFactory = espn_client_factory,
        event_bus: Optional[EventBus] = None,
        tracker: Optional[ProgressTracker] = None,
        week_delay: Optional[float] = None,
        season_fetch_delay: Optional[float] = None,
        transaction_page_delay: Optional[float] = None,
        between_season_delay: Optional[float] = None,
        transaction_page_size: Optional[int] = None,
        lease_seconds: Optional[int] = None,
        owner_id: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.session_factory = session_factory
        self.credential_store = credential_store
        self.client_factory = client_factory
        self.event_bus = event_bus or LoggingEventBus()
        self.tracker = tracker or ProgressTracker(session_factory, event_bus=self.event_bus)
        self.dedup = DeduplicationService(session_factory)
        self.week_delay = settings.WEEK_FETCH_DELAY if week_delay is None else week_delay
        self.season_fetch_delay = settings.SEASON_FETCH_DELAY if season_fetch_delay is None else season_fetch_delay
        self.transaction_page_delay = (
            settings.TRANSACTION_PAGE_DELAY if transaction_page_delay is None else transaction_page_delay
        )
        self.between_season_delay = (
            settings.BETWEEN_SEASON_DELAY if between_season_delay is None else between_season_delay
        )
        self.transaction_page_size = transaction_page_size or settings.TRANSACTION_PAGE_SIZE
        self.lease_seconds = lease_seconds or settings.IMPORT_LEASE_SECONDS
        self.owner_id = owner_id or f"runner_{uuid.uuid4().hex[:12]}"
        self.clock = clock

        self._cache: Dict[str, ImportProgress] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ========================================================================
    # Public contract
    # ========================================================================

    async def create_job(
        self,
        league: LeagueRef,
        start_year: int,
        end_year: int,
        seasons: Optional[List[int]] = None,
        force: bool = False
    ) -> str:
        """Persist a pending job with one pending checkpoint per season"""
        season_list = sorted(set(seasons)) if seasons else list(range(start_year, end_year + 1))
        if not season_list:
            raise ValueError("An import needs at least one season")

        import_id = new_import_id()
        job = ImportJob(
            id=import_id,
            league_id=league.league_id,
            provider_league_id=league.provider_league_id,
            credentials_ref=league.credentials_ref,
            start_year=min(season_list),
            end_year=max(season_list),
            force=force,
            status=ImportStatus.PENDING,
            seasons=[SeasonCheckpoint(season=s).model_dump(mode="json") for s in season_list],
            errors=[],
            total_seasons=len(season_list),
            completed_seasons=0,
        )
        async with self.session_factory() as session:
            session.add(job)
            await session.commit()

        self._cache[import_id] = ImportProgress.from_job(job)
        logger.info(
            f"Created import {import_id} for league {league.league_id}: "
            f"seasons {season_list[0]}-{season_list[-1]} ({len(season_list)})"
        )
        return import_id

    async def start_import(
        self,
        league: LeagueRef,
        start_year: int,
        end_year: int,
        seasons: Optional[List[int]] = None,
        force: bool = False
    ) -> str:
        """Create a job and run it in the background. Returns immediately."""
        import_id = await self.create_job(league, start_year, end_year, seasons=seasons, force=force)
        self._spawn(import_id, self.run_import(import_id))
        return import_id

    async def run_import(self, import_id: str) -> Optional[ImportProgress]:
        """Claim the job and run it to a terminal status"""
        await self._claim(import_id)
        return await self._execute(import_id)

    async def resume_import(self, import_id: str, force: bool = False) -> Optional[ImportProgress]:
        """
        Continue a job from its first non-completed season.

        Returns:
            Progress view, or None for an unknown id

        Raises:
            ImportClaimError: If another runner holds a live lease
        """
        job = await self._load_job(import_id)
        if job is None:
            return None

        checkpoints = [SeasonCheckpoint(**s) for s in job.seasons or []]
        if not force and all(c.is_done for c in checkpoints):
            logger.info(f"Import {import_id} has no remaining seasons")
            return ImportProgress.from_job(job)

        await self._claim(import_id)
        self._spawn(import_id, self._execute(import_id, force_completed=force))
        return await self.get_progress(import_id)

    async def cancel_import(self, import_id: str) -> bool:
        """Request a cooperative pause; honored before the next season starts"""
        async with self.session_factory() as session:
            result = await session.execute(
                update(ImportJob)
                .where(
                    ImportJob.id == import_id,
                    ImportJob.status.in_([ImportStatus.PENDING, ImportStatus.RUNNING])
                )
                .values(cancel_requested=True, updated_at=self.clock())
            )
            await session.commit()

        requested = (result.rowcount or 0) > 0
        if requested:
            logger.info(f"Cancellation requested for import {import_id}")
            cached = self._cache.get(import_id)
            if cached is not None:
                cached.cancel_requested = True
        return requested

    async def get_progress(self, import_id: str) -> Optional[ImportProgress]:
        """Cached view of a running job, else the durable job row"""
        cached = self._cache.get(import_id)
        if cached is not None:
            return cached
        job = await self._load_job(import_id)
        return ImportProgress.from_job(job) if job is not None else None

    async def wait(self, import_id: str) -> Optional[ImportProgress]:
        """Await the background task of a job started by this orchestrator"""
        task = self._tasks.get(import_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.get_progress(import_id)

    # ========================================================================
    # Job registry
    # ========================================================================

    def _spawn(self, import_id: str, coro):
        task = asyncio.create_task(self._guarded(import_id, coro))
        self._tasks[import_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(import_id, None))

    async def _guarded(self, import_id: str, coro):
        try:
            await coro
        except ImportClaimError as e:
            logger.warning(f"Import {import_id} not started: {e.message}")
        except Exception as e:
            logger.exception(f"Import {import_id} crashed")
            await self._finish(import_id, ImportStatus.FAILED, error=ImportErrorRecord(
                message=str(e), error_type=type(e).__name__
            ))

    async def _load_job(self, import_id: str) -> Optional[ImportJob]:
        async with self.session_factory() as session:
            return await session.get(ImportJob, import_id)

    async def _claim(self, import_id: str):
        """
        Status-guarded conditional write: succeeds only if nobody holds a
        live lease on the job.
        """
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                update(ImportJob)
                .where(
                    ImportJob.id == import_id,
                    or_(
                        ImportJob.status != ImportStatus.RUNNING,
                        ImportJob.lease_expires_at.is_(None),
                        ImportJob.lease_expires_at < now,
                    )
                )
                .values(
                    status=ImportStatus.RUNNING,
                    lease_owner=self.owner_id,
                    lease_expires_at=now + timedelta(seconds=self.lease_seconds),
                    started_at=func.coalesce(ImportJob.started_at, now),
                    completed_at=None,
                    updated_at=now,
                )
            )
            await session.commit()

        if (result.rowcount or 0) != 1:
            raise ImportClaimError(
                f"Import {import_id} is already running or does not exist",
                context={"import_id": import_id, "owner": self.owner_id}
            )
        logger.info(f"Runner {self.owner_id} claimed import {import_id}")

    async def _save_job(
        self,
        import_id: str,
        checkpoints: List[SeasonCheckpoint],
        errors: List[ImportErrorRecord],
        **values
    ) -> Optional[ImportProgress]:
        """Persist checkpoints/errors, renew the lease and refresh the cached view"""
        now = self.clock()
        values.update(
            seasons=[c.model_dump(mode="json") for c in checkpoints],
            errors=[e.model_dump(mode="json") for e in errors],
            completed_seasons=sum(1 for c in checkpoints if c.is_done),
            total_seasons=len(checkpoints),
            lease_expires_at=now + timedelta(seconds=self.lease_seconds),
            updated_at=now,
        )
        async with self.session_factory() as session:
            await session.execute(
                update(ImportJob)
                .where(ImportJob.id == import_id, ImportJob.lease_owner == self.owner_id)
                .values(**values)
            )
            await session.commit()
            job = await session.get(ImportJob, import_id, populate_existing=True)

        if job is None:
            return None
        self._cache[import_id] = ImportProgress.from_job(job)
        return self._cache[import_id]

    async def _cancel_requested(self, import_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImportJob.cancel_requested).where(ImportJob.id == import_id)
            )
            return bool(result.scalar_one_or_none())

    async def _finish(
        self,
        import_id: str,
        status: ImportStatus,
        error: Optional[ImportErrorRecord] = None
    ) -> Optional[ImportProgress]:
        """Terminal write: status, completion time, lease released"""
        job = await self._load_job(import_id)
        if job is None:
            return None

        errors = list(job.errors or [])
        if error is not None:
            errors.append(error.model_dump(mode="json"))

        now = self.clock()
        async with self.session_factory() as session:
            await session.execute(
                update(ImportJob)
                .where(ImportJob.id == import_id)
                .values(
                    status=status,
                    errors=errors,
                    completed_at=now if status != ImportStatus.PAUSED else None,
                    lease_owner=None,
                    cancel_requested=False,
                    lease_expires_at=None,
                    updated_at=now,
                )
            )
            await session.commit()
            job = await session.get(ImportJob, import_id, populate_existing=True)

        self._cache.pop(import_id, None)
        return ImportProgress.from_job(job)

    # ========================================================================
    # Job body
    # ========================================================================

    async def _execute(self, import_id: str, force_completed: bool = False) -> Optional[ImportProgress]:
        job = await self._load_job(import_id)
        if job is None:
            return None

        league = LeagueRef(
            league_id=job.league_id,
            provider_league_id=job.provider_league_id,
            credentials_ref=job.credentials_ref,
        )
        checkpoints = [SeasonCheckpoint(**s) for s in job.seasons or []]
        errors = [ImportErrorRecord(**e) for e in job.errors or []]
        force = bool(job.force) or force_completed

        # Resume the tracker from its durable checkpoint when there is one
        if await self.tracker.resume_from_checkpoint(import_id) is None:
            await self.tracker.start_tracking(
                import_id, league.league_id, len(checkpoints) * ESTIMATED_ITEMS_PER_SEASON
            )

        credentials = await self.credential_store.get_credentials(league)
        if credentials is None:
            error = CredentialsError(
                "No provider credentials found for league",
                context={"league_id": league.league_id, "credentials_ref": league.credentials_ref}
            )
            return await self._abort(import_id, error, context={"league_id": league.league_id})

        to_run = [c for c in checkpoints if force_completed or not c.is_done]
        logger.info(
            f"Import {import_id}: {len(to_run)} of {len(checkpoints)} seasons to process "
            f"for league {league.league_id}"
        )

        for index, checkpoint in enumerate(to_run):
            if await self._cancel_requested(import_id):
                logger.info(f"Import {import_id} paused before season {checkpoint.season}")
                await self.tracker.pause_import(import_id)
                progress = await self._finish(import_id, ImportStatus.PAUSED)
                await self._emit(IMPORT_PAUSED, progress)
                return progress

            progress = await self._save_job(
                import_id, checkpoints, errors, current_season=checkpoint.season
            )
            await self._emit(IMPORT_PROGRESS, progress)

            try:
                await self._import_season(import_id, league, credentials, checkpoint, checkpoints, errors, force)
            except AuthenticationError as e:
                # Rejected credentials fail every remaining season the same way
                checkpoint.transition(SeasonStatus.FAILED)
                checkpoint.error = e.message
                await self._save_job(import_id, checkpoints, errors)
                return await self._abort(
                    import_id, e, season=checkpoint.season,
                    context={"league_id": league.league_id, "season": checkpoint.season}
                )
            except Exception as e:
                logger.error(f"Failed to import season {checkpoint.season} for {import_id}: {e}")
                message = getattr(e, "message", None) or str(e)
                checkpoint.transition(SeasonStatus.FAILED)
                checkpoint.error = message
                if isinstance(e, SeasonValidationError):
                    checkpoint.warnings = e.warnings
                errors.append(ImportErrorRecord(
                    season=checkpoint.season,
                    message=message,
                    error_type=type(e).__name__,
                    context=getattr(e, "context", {}),
                ))
                await self.tracker.record_error(
                    import_id, str(e), operation="season", season=checkpoint.season
                )

            progress = await self._save_job(import_id, checkpoints, errors)
            await self._emit(IMPORT_PROGRESS, progress)
            if checkpoint.is_done:
                await self._emit(IMPORT_SEASON_COMPLETED, progress, {"season": checkpoint.season})

            if index < len(to_run) - 1 and self.between_season_delay:
                await asyncio.sleep(self.between_season_delay)

        await self._update_sync_metadata(league.league_id, checkpoints)
        await self.tracker.complete_import(import_id)
        progress = await self._finish(import_id, ImportStatus.COMPLETED)
        failed = [c.season for c in checkpoints if c.status == SeasonStatus.FAILED]
        logger.info(
            f"Import {import_id} completed: {progress.completed_seasons}/{progress.total_seasons} seasons"
            + (f", failed seasons {failed}" if failed else "")
        )
        await self._emit(IMPORT_COMPLETED, progress)
        return progress

    async def _abort(
        self,
        import_id: str,
        error: Exception,
        season: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Optional[ImportProgress]:
        """End the whole job as FAILED (missing or rejected credentials)"""
        message = getattr(error, "message", None) or str(error)
        logger.error(f"Import {import_id} aborted: {error}")
        await self.tracker.fail_import(import_id, message)
        progress = await self._finish(import_id, ImportStatus.FAILED, error=ImportErrorRecord(
            season=season, message=message, error_type=type(error).__name__, context=context or {}
        ))
        await self._emit(IMPORT_FAILED, progress)
        return progress

    async def _import_season(
        self,
        import_id: str,
        league: LeagueRef,
        credentials: EspnCredentials,
        checkpoint: SeasonCheckpoint,
        checkpoints: List[SeasonCheckpoint],
        errors: List[ImportErrorRecord],
        force: bool
    ):
        season = checkpoint.season
        checkpoint.transition(SeasonStatus.FETCHING, force=force)
        checkpoint.error = None
        checkpoint.skipped_unchanged = False
        checkpoint.warnings = []
        await self._save_job(import_id, checkpoints, errors)

        # --------------------------------------------------
        # FETCH
        # --------------------------------------------------
        async with self.client_factory(league, season, credentials) as client:
            league_data = await client.get_league()
            await self.tracker.update_progress(import_id, 1, "league", season=season)
            await self._sleep(self.season_fetch_delay)

            matchups = await self._fetch_matchups(import_id, client, league_data, checkpoint)
            await self._sleep(self.season_fetch_delay)

            players = self._season_players(league_data)
            await self.tracker.update_progress(import_id, len(players), "players", season=season)
            await self._sleep(self.season_fetch_delay)

            transactions = await self._fetch_transactions(import_id, client, checkpoint)

        checkpoint.transition(SeasonStatus.PROCESSING)

        # --------------------------------------------------
        # DEDUPLICATE / VALIDATE / FINGERPRINT
        # --------------------------------------------------
        payload = {
            "league": league_data,
            "matchups": deduplicate(matchups, EntityKind.MATCHUP, season),
            "players": deduplicate(players, EntityKind.PLAYER, season),
            "transactions": deduplicate(transactions, EntityKind.TRANSACTION, season),
        }
        report = validate_season_data(payload)
        checkpoint.warnings.extend(report.warnings)
        if not report.valid:
            raise SeasonValidationError(
                "; ".join(report.errors),
                errors=report.errors,
                warnings=report.warnings,
                context={"league_id": league.league_id, "season": season}
            )

        rows = LeagueTransformer(league.league_id, season).transform_season(payload)
        digest = fingerprint(payload)
        record_count = len(payload["matchups"]) + len(payload["players"]) + len(payload["transactions"])
        season_totals = (len(rows.matchups), len(rows.players), len(rows.transactions))

        # --------------------------------------------------
        # LOAD (one transaction per season)
        # --------------------------------------------------
        try:
            stored = await self.dedup.season_data_exists(league.league_id, season)
            if stored == digest and not force:
                logger.info(f"Season {season} data unchanged, skipping storage")
                checkpoint.skipped_unchanged = True
            else:
                if not force:
                    rows = await self._skip_known_records(league.league_id, season, rows)
                async with self.session_factory() as session:
                    async with session.begin():
                        loader = LeagueLoader(session)
                        await loader.upsert_snapshot(league.league_id, season, payload, digest, record_count)
                        await loader.load_season(rows)
        except Exception as e:
            raise DatabaseError(
                f"Failed to store season {season}",
                context={"league_id": league.league_id, "season": season, "operation": "UPSERT"},
                original_exception=e
            )

        (
            checkpoint.matchups_imported,
            checkpoint.players_imported,
            checkpoint.transactions_imported,
        ) = season_totals
        checkpoint.transition(SeasonStatus.COMPLETED)
        logger.info(
            f"Season {season}: {checkpoint.matchups_imported} matchups, "
            f"{checkpoint.players_imported} players, {checkpoint.transactions_imported} transactions"
        )

    async def _skip_known_records(self, league_id: str, season: int, rows: SeasonRows) -> SeasonRows:
        """
        Drop players and transactions that are already stored.

        Transactions are settled events and player identity rows are
        league-wide, so only a forced import rewrites them.
        """
        known = await self.dedup.batch_check_existence(
            league_id,
            season,
            [p.external_player_id for p in rows.players],
            [t.transaction_id for t in rows.transactions],
        )
        players = [p for p in rows.players if str(p.external_player_id) not in known["existing_players"]]
        transactions = [
            t for t in rows.transactions if str(t.transaction_id) not in known["existing_transactions"]
        ]
        skipped = len(rows.players) - len(players) + len(rows.transactions) - len(transactions)
        if skipped:
            logger.info(f"Season {season}: {skipped} known players/transactions not rewritten")
        return rows.model_copy(update={"players": players, "transactions": transactions})

    async def _fetch_matchups(
        self,
        import_id: str,
        client: ProviderClient,
        league_data: Dict[str, Any],
        checkpoint: SeasonCheckpoint
    ) -> List[Dict[str, Any]]:
        """Scoreboard week by week; a failed week is a warning, not a season failure"""
        schedule_settings = (league_data.get("settings") or {}).get("scheduleSettings") or {}
        total_weeks = schedule_settings.get("matchupPeriodCount") or settings.DEFAULT_MATCHUP_PERIODS

        matchups: List[Dict[str, Any]] = []
        for week in range(1, total_weeks + 1):
            try:
                week_data = await client.get_scoreboard(week)
                week_matchups = [
                    m for m in week_data.get("schedule") or []
                    if m.get("matchupPeriodId", week) == week
                ]
                matchups.extend(week_matchups)
                await self.tracker.update_progress(
                    import_id, len(week_matchups), "matchups", season=checkpoint.season, week=week
                )
            except AuthenticationError:
                raise
            except Exception as e:
                logger.error(f"Failed to fetch week {week} of season {checkpoint.season}: {e}")
                checkpoint.warnings.append(f"Failed to fetch week {week}: {e}")
                await self.tracker.record_error(
                    import_id, str(e), operation="matchups", season=checkpoint.season, week=week
                )
            await self._sleep(self.week_delay)
        return matchups

    @staticmethod
    def _season_players(league_data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Unique rostered players across all teams"""
        players: Dict[Any, Dict[str, Any]] = {}
        for team in league_data.get("teams") or []:
            for entry in (team.get("roster") or {}).get("entries") or []:
                player = (entry.get("playerPoolEntry") or {}).get("player")
                if player and player.get("id") not in players:
                    players[player.get("id")] = player
        return list(players.values())

    async def _fetch_transactions(
        self,
        import_id: str,
        client: ProviderClient,
        checkpoint: SeasonCheckpoint
    ) -> List[Dict[str, Any]]:
        """Paginate until a short page; a failed page ends pagination with a warning"""
        transactions: List[Dict[str, Any]] = []
        offset = 0
        while True:
            try:
                page = await client.get_transactions(offset, self.transaction_page_size)
            except AuthenticationError:
                raise
            except Exception as e:
                logger.error(f"Failed to fetch transactions at offset {offset}: {e}")
                checkpoint.warnings.append(f"Failed to fetch transactions at offset {offset}: {e}")
                break

            transactions.extend(page)
            await self.tracker.update_progress(
                import_id, len(page), "transactions", season=checkpoint.season
            )
            if len(page) < self.transaction_page_size:
                break
            offset += self.transaction_page_size
            await self._sleep(self.transaction_page_delay)
        return transactions

    async def _update_sync_metadata(self, league_id: str, checkpoints: List[SeasonCheckpoint]):
        completed = [c.season for c in checkpoints if c.is_done]
        try:
            async with self.session_factory() as session:
                await LeagueLoader(session).upsert_sync_metadata(
                    league_id,
                    last_synced_season=max(completed) if completed else None
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to update sync metadata for league {league_id}: {e}")

    async def _emit(self, event: str, progress: Optional[ImportProgress], extra: Optional[Dict[str, Any]] = None):
        if progress is None:
            return
        data = {
            "percentage": progress.percentage,
            "status": progress.status.value if hasattr(progress.status, "value") else progress.status,
            "current_season": progress.current_season,
            "completed_seasons": progress.completed_seasons,
            "total_seasons": progress.total_seasons,
            "checkpoints": [c.model_dump(mode="json") for c in progress.seasons],
            "errors": [e.model_dump(mode="json") for e in progress.errors],
        }
        if extra:
            data.update(extra)
        await self.event_bus.emit(event, progress.import_id, progress.league_id, data)

    @staticmethod
    async def _sleep(seconds: float):
        if seconds:
            await asyncio.sleep(seconds)
