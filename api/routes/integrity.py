"""
Integrity audit and remediation endpoints
"""

from fastapi import APIRouter, Depends, Request
from api.dependencies import get_league, get_integrity_checker, get_dedup_service
from api.middleware import api_response
from schemas.api import APIResponse
from schemas.imports import LeagueRef, IntegrityCheckResult, FixResult
from ingestion.dedup import DeduplicationService
from ingestion.integrity import DataIntegrityChecker
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/leagues/{league_id}", tags=["Integrity"])


@router.get("/integrity", response_model=APIResponse[IntegrityCheckResult])
async def check_integrity(
    request: Request,
    league: LeagueRef = Depends(get_league),
    checker: DataIntegrityChecker = Depends(get_integrity_checker)
):
    """Read-only audit of the league's stored data"""
    return api_response(request, await checker.validate_import(league.league_id))


@router.post("/integrity/fix", response_model=APIResponse[FixResult])
async def fix_integrity(
    request: Request,
    league: LeagueRef = Depends(get_league),
    checker: DataIntegrityChecker = Depends(get_integrity_checker)
):
    """Remove duplicate and orphaned matchups, clamp negative scores"""
    result = await checker.fix_common_issues(league.league_id)
    logger.info(f"[{request.state.request_id}] Fixed {result.total_fixed} matchup rows for {league.league_id}")
    return api_response(request, result)


@router.post("/duplicates/clean", response_model=APIResponse[dict])
async def clean_duplicates(
    request: Request,
    league: LeagueRef = Depends(get_league),
    dedup: DeduplicationService = Depends(get_dedup_service)
):
    removed = await dedup.clean_duplicates(league.league_id)
    return api_response(request, {"league_id": league.league_id, "duplicates_removed": removed})
