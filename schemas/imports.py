"""
Pydantic schemas for import jobs, sync planning, integrity audits and progress tracking
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
from models.base import ImportStatus, SeasonStatus
from core.exceptions import InvalidTransitionError


# ============================================================================
# League Reference
# ============================================================================

class LeagueRef(BaseModel):
    """What the pipeline needs to know about a league to reach the provider"""
    league_id: str
    provider_league_id: int
    credentials_ref: Optional[str] = None
    sport: str = "ffl"

    class Config:
        from_attributes = True


# ============================================================================
# Import Job Schemas
# ============================================================================

# Allowed forward moves of a season checkpoint. Retrying a failed season
# goes back through fetching; completed is terminal unless forced.
_SEASON_TRANSITIONS = {
    SeasonStatus.PENDING: {SeasonStatus.FETCHING, SeasonStatus.FAILED},
    SeasonStatus.FETCHING: {SeasonStatus.PROCESSING, SeasonStatus.FAILED},
    SeasonStatus.PROCESSING: {SeasonStatus.COMPLETED, SeasonStatus.FAILED, SeasonStatus.FETCHING},
    SeasonStatus.FAILED: {SeasonStatus.FETCHING, SeasonStatus.FAILED},
    SeasonStatus.COMPLETED: set(),
}


class SeasonCheckpoint(BaseModel):
    """Per-season progress inside an import job"""
    season: int
    status: SeasonStatus = SeasonStatus.PENDING
    matchups_imported: int = 0
    players_imported: int = 0
    transactions_imported: int = 0
    skipped_unchanged: bool = False
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    completed_at: Optional[datetime] = None

    def transition(self, new_status: SeasonStatus, force: bool = False) -> "SeasonCheckpoint":
        """
        Move the checkpoint to a new status.

        A completed season never regresses unless force is set
        (explicit forced re-import).

        Raises:
            InvalidTransitionError: If the move is not allowed
        """
        if new_status == self.status and new_status != SeasonStatus.FAILED:
            return self

        allowed = _SEASON_TRANSITIONS[self.status]
        if new_status not in allowed and not force:
            raise InvalidTransitionError(
                f"Season {self.season} cannot move from {self.status.value} to {new_status.value}",
                context={"season": self.season, "from": self.status.value, "to": new_status.value}
            )

        if force and self.status == SeasonStatus.COMPLETED:
            self.completed_at = None
            self.skipped_unchanged = False

        self.status = new_status
        if new_status == SeasonStatus.COMPLETED:
            self.completed_at = datetime.utcnow()
            self.error = None
        return self

    @property
    def is_done(self) -> bool:
        return self.status == SeasonStatus.COMPLETED


class ImportErrorRecord(BaseModel):
    """Error recorded on an import job"""
    season: Optional[int] = None
    message: str
    error_type: str = "ImportError"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    context: Dict[str, Any] = Field(default_factory=dict)


class ImportProgress(BaseModel):
    """Externally visible view of an import job"""
    import_id: str
    league_id: str
    status: ImportStatus
    start_year: int
    end_year: int
    total_seasons: int = 0
    completed_seasons: int = 0
    current_season: Optional[int] = None
    percentage: float = 0.0
    cancel_requested: bool = False
    seasons: List[SeasonCheckpoint] = Field(default_factory=list)
    errors: List[ImportErrorRecord] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job) -> "ImportProgress":
        """Build the view from an ImportJob row"""
        seasons = [SeasonCheckpoint(**s) for s in (job.seasons or [])]
        completed = sum(1 for s in seasons if s.is_done)
        total = len(seasons)
        return cls(
            import_id=job.id,
            league_id=job.league_id,
            status=job.status,
            start_year=job.start_year,
            end_year=job.end_year,
            total_seasons=total,
            completed_seasons=completed,
            current_season=job.current_season,
            percentage=round(completed / total * 100, 1) if total else 0.0,
            cancel_requested=bool(job.cancel_requested),
            seasons=seasons,
            errors=[ImportErrorRecord(**e) for e in (job.errors or [])],
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "import_id": "imp_1718000000000_a1b2c3d4",
                "league_id": "league-1",
                "status": "running",
                "start_year": 2020,
                "end_year": 2023,
                "total_seasons": 4,
                "completed_seasons": 1,
                "current_season": 2021,
                "percentage": 25.0,
                "seasons": [
                    {"season": 2020, "status": "completed", "matchups_imported": 85},
                    {"season": 2021, "status": "fetching"},
                ],
                "errors": []
            }
        }


# ============================================================================
# Sync Planning Schemas
# ============================================================================

class SyncRequirement(BaseModel):
    """Missing data for a league, recomputed on demand"""
    league_id: str
    missing_seasons: List[int] = Field(default_factory=list)
    missing_weeks: List[int] = Field(default_factory=list)
    current_season: int
    current_week: int
    last_synced_at: Optional[datetime] = None
    estimated_missing_records: int = 0

    @property
    def needs_sync(self) -> bool:
        return bool(self.missing_seasons or self.missing_weeks)


class SyncResult(BaseModel):
    """Outcome of an incremental sync"""
    league_id: str
    import_id: Optional[str] = None
    seasons_scheduled: List[int] = Field(default_factory=list)
    weeks_synced: List[int] = Field(default_factory=list)
    weeks_failed: List[int] = Field(default_factory=list)
    matchups_upserted: int = 0


class SyncStats(BaseModel):
    """Stored data summary for a league"""
    league_id: str
    total_seasons: int = 0
    total_matchups: int = 0
    total_players: int = 0
    total_transactions: int = 0
    oldest_season: Optional[int] = None
    newest_season: Optional[int] = None
    data_size: int = Field(0, description="Records held in season snapshots")
    last_synced_at: Optional[datetime] = None
    last_synced_season: Optional[int] = None
    last_synced_week: Optional[int] = None


# ============================================================================
# Integrity Schemas
# ============================================================================

class IssueKind(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCategory(str, Enum):
    DUPLICATES = "duplicates"
    MISSING_DATA = "missing_data"
    INVALID_DATA = "invalid_data"
    ORPHANED_DATA = "orphaned_data"
    INCOMPLETE_DATA = "incomplete_data"
    SUSPICIOUS_DATA = "suspicious_data"


class IntegrityIssue(BaseModel):
    """Typed finding of an integrity check"""
    type: IssueKind
    category: IssueCategory
    description: str
    affected_records: int = 0
    details: Optional[Dict[str, Any]] = None

    @validator("affected_records")
    def validate_affected_records(cls, v):
        if v < 0:
            raise ValueError("affected_records cannot be negative")
        return v


class ImportStatistics(BaseModel):
    """Aggregate counts for an audited league"""
    total_seasons: int = 0
    total_matchups: int = 0
    total_players: int = 0
    total_transactions: int = 0
    total_teams: int = 0
    seasons: List[int] = Field(default_factory=list)
    completeness: float = 0.0


class IntegrityCheckResult(BaseModel):
    """Result of a full integrity audit"""
    league_id: str
    valid: bool
    issues: List[IntegrityIssue] = Field(default_factory=list)
    stats: ImportStatistics = Field(default_factory=ImportStatistics)
    recommendations: List[str] = Field(default_factory=list)
    failed_checks: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.type == IssueKind.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.type == IssueKind.WARNING)


class FixResult(BaseModel):
    """Rows touched by automatic remediation (matchup rows only)"""
    league_id: str
    duplicates_removed: int = 0
    orphans_removed: int = 0
    scores_clamped: int = 0

    @property
    def total_fixed(self) -> int:
        return self.duplicates_removed + self.orphans_removed + self.scores_clamped


class ValidationReport(BaseModel):
    """Pre-storage validation of one season payload"""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ============================================================================
# Progress Tracker Schemas
# ============================================================================

class ProgressCheckpoint(BaseModel):
    """One entry of the recent-checkpoint ring buffer"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    processed_items: int
    operation: Optional[str] = None
    season: Optional[int] = None
    week: Optional[int] = None


class ProgressError(BaseModel):
    """Error recorded while tracking a job"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    message: str
    operation: Optional[str] = None
    season: Optional[int] = None
    week: Optional[int] = None


class ImportProgressData(BaseModel):
    """In-memory tracker state for one job"""
    import_id: str
    league_id: str
    status: ImportStatus = ImportStatus.RUNNING
    total_items: int = 0
    processed_items: int = 0
    current_operation: Optional[str] = None
    current_season: Optional[int] = None
    current_week: Optional[int] = None
    start_time: datetime = Field(default_factory=datetime.utcnow)
    last_checkpoint_at: datetime = Field(default_factory=datetime.utcnow)
    items_since_checkpoint: int = 0
    items_at_start: int = 0  # processed_items when start_time was (re)set
    estimated_time_remaining_ms: Optional[int] = None
    evict_at: Optional[datetime] = None
    checkpoints: List[ProgressCheckpoint] = Field(default_factory=list)
    errors: List[ProgressError] = Field(default_factory=list)

    @property
    def percentage(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return round(min(self.processed_items / self.total_items, 1.0) * 100, 1)


class ImportRunStats(BaseModel):
    """Throughput summary of a tracked job"""
    items_per_second: float
    percent_complete: float
    estimated_time_remaining: str
    elapsed_time: str


class ProgressEvent(BaseModel):
    """Event published on the progress bus"""
    event: str
    import_id: str
    league_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
