from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Integer, Boolean, Index
from datetime import datetime
from models.base import Base, ImportStatus, JSONType


class ImportJob(Base):
    """
    Durable record of one league's multi-season backfill.

    Purpose:
    - Source of truth for job status (in-memory state is only a cache)
    - Per-season checkpoints for resume-on-failure
    - Audit trail of per-season errors
    - Lease for mutual exclusion between runners

    Design:
    - seasons holds the ordered SeasonCheckpoint list as JSON
    - errors holds ImportError entries as JSON
    - lease_owner/lease_expires_at are written with a status-guarded
      conditional UPDATE before the job transitions to running
    """
    __tablename__ = "import_jobs"

    id = Column(String(64), primary_key=True)
    league_id = Column(String(64), nullable=False, index=True)
    provider_league_id = Column(BigInteger, nullable=False)
    credentials_ref = Column(String(64), nullable=True)

    # Season range
    start_year = Column(Integer, nullable=False)
    end_year = Column(Integer, nullable=False)
    force = Column(Boolean, nullable=False, default=False)

    # Run metadata
    status = Column(Enum(ImportStatus), default=ImportStatus.PENDING, nullable=False, index=True)
    current_season = Column(Integer, nullable=True)
    completed_seasons = Column(Integer, nullable=False, default=0)
    total_seasons = Column(Integer, nullable=False, default=0)

    # Checkpoints and errors
    seasons = Column(JSONType, nullable=False, default=list)
    errors = Column(JSONType, nullable=False, default=list)

    # Cooperative cancellation and lease
    cancel_requested = Column(Boolean, nullable=False, default=False)
    lease_owner = Column(String(64), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    # Timestamps
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_import_job_league_created", "league_id", "created_at"),
    )
