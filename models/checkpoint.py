from sqlalchemy import Column, Integer, String, Enum, DateTime, BigInteger
from datetime import datetime
from models.base import Base, ImportStatus, JSONType


class ImportCheckpoint(Base):
    """
    Durable progress state of a long-running job, keyed by import id.

    Purpose:
    - Resume progress tracking after a restart
    - Late status polling after the in-memory entry is evicted
    - Import history per league

    Design:
    - One row per import id, overwritten on every checkpoint
    - checkpoint_data keeps the ring buffer of recent checkpoints
      and the bounded list of recent errors
    """
    __tablename__ = "import_checkpoints"

    import_id = Column(String(64), primary_key=True)
    league_id = Column(String(64), nullable=False, index=True)

    # Progress counters
    processed_items = Column(Integer, nullable=False, default=0)
    total_items = Column(Integer, nullable=False, default=0)
    current_operation = Column(String(255), nullable=True)
    current_season = Column(Integer, nullable=True)
    current_week = Column(Integer, nullable=True)
    estimated_time_remaining_ms = Column(BigInteger, nullable=True)

    # Status
    status = Column(Enum(ImportStatus), default=ImportStatus.PENDING, nullable=False, index=True)

    # Recent checkpoints / errors
    checkpoint_data = Column(JSONType, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)
