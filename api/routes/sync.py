"""
Incremental sync endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from api.dependencies import get_league, get_sync_planner
from api.middleware import api_response
from core.exceptions import CredentialsError
from schemas.api import APIResponse, SyncNeededResponse
from schemas.imports import LeagueRef, SyncRequirement, SyncResult, SyncStats
from ingestion.sync import IncrementalSyncPlanner
from typing import Optional
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/leagues/{league_id}", tags=["Sync"])


@router.get("/sync/requirements", response_model=APIResponse[SyncRequirement])
async def sync_requirements(
    request: Request,
    lookback_years: Optional[int] = Query(None, ge=1, le=30),
    include_current_season: bool = Query(True),
    league: LeagueRef = Depends(get_league),
    planner: IncrementalSyncPlanner = Depends(get_sync_planner)
):
    requirement = await planner.get_sync_requirements(
        league.league_id,
        lookback_years=lookback_years,
        include_current_season=include_current_season
    )
    return api_response(request, requirement)


@router.get("/sync/needed", response_model=APIResponse[SyncNeededResponse])
async def sync_needed(
    request: Request,
    league: LeagueRef = Depends(get_league),
    planner: IncrementalSyncPlanner = Depends(get_sync_planner)
):
    needed = await planner.is_sync_needed(league.league_id)
    return api_response(request, SyncNeededResponse(league_id=league.league_id, sync_needed=needed))


@router.post("/sync", response_model=APIResponse[SyncResult])
async def sync_league(
    request: Request,
    force_refresh: bool = Query(False),
    league: LeagueRef = Depends(get_league),
    planner: IncrementalSyncPlanner = Depends(get_sync_planner)
):
    try:
        result = await planner.sync_incremental(league, force_refresh=force_refresh)
    except CredentialsError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return api_response(request, result)


@router.get("/sync/stats", response_model=APIResponse[SyncStats])
async def sync_stats(
    request: Request,
    league: LeagueRef = Depends(get_league),
    planner: IncrementalSyncPlanner = Depends(get_sync_planner)
):
    return api_response(request, await planner.get_sync_stats(league.league_id))


@router.delete("/history", response_model=APIResponse[dict])
async def clear_history(
    request: Request,
    league: LeagueRef = Depends(get_league),
    planner: IncrementalSyncPlanner = Depends(get_sync_planner)
):
    """Delete all imported data of the league"""
    deleted = await planner.clear_historical_data(league.league_id)
    return api_response(request, deleted)
