from sqlalchemy import Column, String, Integer, DateTime
from datetime import datetime
from models.base import Base


class SyncMetadata(Base):
    """
    Sync watermark per league.

    Written when an import job completes and after every incremental
    sync; read by the planner to decide whether a sync is needed.
    """
    __tablename__ = "sync_metadata"

    league_id = Column(String(64), primary_key=True)
    last_synced_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_synced_season = Column(Integer, nullable=True)
    last_synced_week = Column(Integer, nullable=True)

    total_seasons = Column(Integer, nullable=False, default=0)
    total_matchups = Column(Integer, nullable=False, default=0)
    total_players = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
