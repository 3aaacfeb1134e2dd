"""
Health check endpoint with database and import job status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, text
from api.dependencies import get_db
from schemas.api import HealthCheckResponse, ImportJobInfo
from models.base import ImportStatus
from models.import_job import ImportJob
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])

RECENT_IMPORTS_LIMIT = 10


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Import job counts and the most recent jobs
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    recent_imports = []
    total_imports = 0
    running_imports = 0
    failed_imports = 0

    if db_connected:
        try:
            result = await db.execute(
                select(ImportJob.status, func.count(ImportJob.id)).group_by(ImportJob.status)
            )
            counts = {status: n for status, n in result.all()}
            total_imports = sum(counts.values())
            running_imports = counts.get(ImportStatus.RUNNING, 0)
            failed_imports = counts.get(ImportStatus.FAILED, 0)

            result = await db.execute(
                select(ImportJob).order_by(ImportJob.created_at.desc()).limit(RECENT_IMPORTS_LIMIT)
            )
            for job in result.scalars().all():
                recent_imports.append(ImportJobInfo(
                    import_id=job.id,
                    league_id=job.league_id,
                    status=job.status,
                    completed_seasons=job.completed_seasons or 0,
                    total_seasons=job.total_seasons or 0,
                    started_at=job.started_at,
                    completed_at=job.completed_at,
                    updated_at=job.updated_at
                ))
        except Exception as e:
            logger.error(f"Failed to fetch import jobs: {str(e)}")

    # Status is derived by the validator in HealthCheckResponse
    return HealthCheckResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        recent_imports=recent_imports,
        total_imports=total_imports,
        running_imports=running_imports,
        failed_imports=failed_imports
    )
