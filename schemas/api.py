"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Generic, TypeVar
from datetime import datetime
from models.base import ImportStatus

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    request_id: str
    api_latency_ms: int
    data: T

# ============================================================================
# Health Check Schemas
# ============================================================================

class ImportJobInfo(BaseModel):
    """Import job summary for health check"""
    import_id: str
    league_id: str
    status: ImportStatus
    completed_seasons: int
    total_seasons: int
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True
        use_enum_values = True


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    recent_imports: List[ImportJobInfo] = Field(default_factory=list)
    total_imports: int = 0
    running_imports: int = 0
    failed_imports: int = 0
    # Declared last so the validator sees the fields above
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        failed = values.get("failed_imports", 0)
        total = values.get("total_imports", 0)

        if total == 0:
            return "healthy"  # Nothing imported yet

        if failed == 0:
            return "healthy"
        elif failed < total:
            return "degraded"
        else:
            return "unhealthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "total_imports": 2,
                "running_imports": 1,
                "failed_imports": 0,
                "recent_imports": [
                    {
                        "import_id": "imp_1718000000000_a1b2c3d4",
                        "league_id": "league-1",
                        "status": "completed",
                        "completed_seasons": 4,
                        "total_seasons": 4,
                        "started_at": "2024-01-15T10:00:00Z",
                        "completed_at": "2024-01-15T10:04:12Z",
                        "updated_at": "2024-01-15T10:04:12Z"
                    }
                ]
            }
        }

# ============================================================================
# Import / Sync Request Schemas
# ============================================================================

class StartImportRequest(BaseModel):
    """Body of POST /leagues/{league_id}/imports"""
    start_year: int = Field(..., ge=2000, description="First season to import")
    end_year: int = Field(..., ge=2000, description="Last season to import (inclusive)")
    seasons: Optional[List[int]] = Field(None, description="Explicit seasons, overrides the range")
    force: bool = Field(False, description="Re-import seasons even if already stored")

    @validator("end_year")
    def validate_range(cls, v, values):
        start = values.get("start_year")
        if start is not None and v < start:
            raise ValueError("end_year must be greater than or equal to start_year")
        return v

    class Config:
        json_schema_extra = {
            "example": {"start_year": 2018, "end_year": 2023, "force": False}
        }


class StartImportResponse(BaseModel):
    import_id: str
    league_id: str
    status: ImportStatus = ImportStatus.PENDING

    class Config:
        use_enum_values = True


class SyncNeededResponse(BaseModel):
    league_id: str
    sync_needed: bool


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Resource not found",
                "detail": "Import imp_123 does not exist",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
