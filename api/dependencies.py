"""
FastAPI dependencies: database sessions, pipeline services and league lookup
"""

from functools import lru_cache
from typing import AsyncGenerator
from fastapi import Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker
from models.league import League
from schemas.imports import LeagueRef
from ingestion.dedup import DeduplicationService
from ingestion.events import EventBus, LoggingEventBus
from ingestion.integrity import DataIntegrityChecker
from ingestion.orchestrator import ImportOrchestrator
from ingestion.progress import ProgressTracker
from ingestion.providers.credentials import SettingsCredentialStore
from ingestion.sync import IncrementalSyncPlanner


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


# One instance of each service per process; tests replace them through
# app.dependency_overrides.

@lru_cache()
def get_event_bus() -> EventBus:
    return LoggingEventBus()


@lru_cache()
def get_tracker() -> ProgressTracker:
    return ProgressTracker(async_session_maker, event_bus=get_event_bus())


@lru_cache()
def get_orchestrator() -> ImportOrchestrator:
    return ImportOrchestrator(
        async_session_maker,
        SettingsCredentialStore(),
        event_bus=get_event_bus(),
        tracker=get_tracker()
    )


@lru_cache()
def get_sync_planner() -> IncrementalSyncPlanner:
    return IncrementalSyncPlanner(async_session_maker, get_orchestrator(), SettingsCredentialStore())


@lru_cache()
def get_integrity_checker() -> DataIntegrityChecker:
    return DataIntegrityChecker(async_session_maker)


@lru_cache()
def get_dedup_service() -> DeduplicationService:
    return DeduplicationService(async_session_maker)


async def get_league(
    league_id: str = Path(..., description="League identifier"),
    db: AsyncSession = Depends(get_db)
) -> LeagueRef:
    """Resolve the path league or 404"""
    league = await db.get(League, league_id)
    if league is None:
        raise HTTPException(status_code=404, detail=f"League {league_id} not found")
    return LeagueRef(
        league_id=league.id,
        provider_league_id=league.provider_league_id,
        credentials_ref=league.credentials_ref,
        sport=league.sport,
    )
