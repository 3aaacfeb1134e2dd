from sqlalchemy import Column, String, Integer, DateTime, UniqueConstraint
from datetime import datetime
from models.base import Base, BigIntPK, JSONType, DataKind


class HistoricalSnapshot(Base):
    """
    Normalized raw payload of one league season.

    Purpose:
    - Idempotent re-imports (fingerprint comparison)
    - Reprocessing capability without hitting the provider
    - Source of truth for which seasons have been imported

    Design:
    - One row per (league_id, season, data_kind)
    - fingerprint is a SHA-256 over the normalized payload
    """
    __tablename__ = "league_historical_data"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    league_id = Column(String(64), nullable=False, index=True)
    season = Column(Integer, nullable=False)
    data_kind = Column(String(50), nullable=False, default=DataKind.FULL_SEASON.value)

    payload = Column(JSONType, nullable=False)
    fingerprint = Column(String(64), nullable=False)
    record_count = Column(Integer, nullable=False, default=0)

    imported_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("league_id", "season", "data_kind", name="uq_snapshot_league_season_kind"),
    )
