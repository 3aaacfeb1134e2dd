"""
Import job endpoints: start, inspect, resume and cancel
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from api.dependencies import get_league, get_orchestrator, get_tracker
from api.middleware import api_response
from core.exceptions import ImportClaimError
from schemas.api import APIResponse, StartImportRequest, StartImportResponse
from schemas.imports import LeagueRef, ImportProgress
from ingestion.orchestrator import ImportOrchestrator
from ingestion.progress import ProgressTracker
from typing import List
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Imports"])


@router.post(
    "/leagues/{league_id}/imports",
    response_model=APIResponse[StartImportResponse],
    status_code=202
)
async def start_import(
    request: Request,
    body: StartImportRequest,
    league: LeagueRef = Depends(get_league),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator)
):
    """
    Start a multi-season backfill in the background.

    Returns the import id immediately; poll GET /imports/{import_id}.
    """
    import_id = await orchestrator.start_import(
        league, body.start_year, body.end_year, seasons=body.seasons, force=body.force
    )
    logger.info(f"[{request.state.request_id}] Started import {import_id} for league {league.league_id}")
    return api_response(request, StartImportResponse(import_id=import_id, league_id=league.league_id))


@router.get("/imports/{import_id}", response_model=APIResponse[ImportProgress])
async def get_import(
    request: Request,
    import_id: str,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator)
):
    progress = await orchestrator.get_progress(import_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Import {import_id} not found")
    return api_response(request, progress)


@router.post("/imports/{import_id}/resume", response_model=APIResponse[ImportProgress])
async def resume_import(
    request: Request,
    import_id: str,
    force: bool = Query(False, description="Re-import completed seasons too"),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator)
):
    try:
        progress = await orchestrator.resume_import(import_id, force=force)
    except ImportClaimError as e:
        raise HTTPException(status_code=409, detail=e.message)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Import {import_id} not found")
    return api_response(request, progress)


@router.post("/imports/{import_id}/cancel", response_model=APIResponse[dict])
async def cancel_import(
    request: Request,
    import_id: str,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator)
):
    """Request cooperative cancellation; the job pauses before its next season"""
    if not await orchestrator.cancel_import(import_id):
        raise HTTPException(status_code=409, detail=f"Import {import_id} is not pending or running")
    return api_response(request, {"import_id": import_id, "cancel_requested": True})


@router.get("/leagues/{league_id}/imports/history", response_model=APIResponse[List[dict]])
async def import_history(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    league: LeagueRef = Depends(get_league),
    tracker: ProgressTracker = Depends(get_tracker)
):
    """Recent persisted progress checkpoints for a league"""
    rows = await tracker.get_import_history(league.league_id, limit=limit)
    history = [
        {
            "import_id": row.import_id,
            "status": row.status.value if hasattr(row.status, "value") else row.status,
            "processed_items": row.processed_items,
            "total_items": row.total_items,
            "current_operation": row.current_operation,
            "updated_at": row.updated_at,
        }
        for row in rows
    ]
    return api_response(request, history)
