"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class, portable column types and shared enums
        (ImportStatus, SeasonStatus, DataKind)
    league: Leagues and imported league rows (teams, players, player stats,
        matchups, transactions)
    snapshot: Normalized season payloads with content fingerprints
    import_job: Durable import jobs with per-season checkpoints and lease
    checkpoint: Progress tracker checkpoints keyed by import id
    sync_metadata: Sync watermark per league

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and JSON on other dialects.

Usage:
    from models.league import LeagueMatchup
    from models.base import ImportStatus

Example:
    snapshot = HistoricalSnapshot(
        league_id="league-1",
        season=2023,
        payload={"league": {...}},
        fingerprint="ab12...",
        record_count=120
    )
    session.add(snapshot)
    await session.commit()
"""

from models.base import Base, ImportStatus, SeasonStatus, DataKind
from models.league import (
    League, LeagueTeam, LeaguePlayer, LeaguePlayerStats, LeagueMatchup, LeagueTransaction
)
from models.snapshot import HistoricalSnapshot
from models.import_job import ImportJob
from models.checkpoint import ImportCheckpoint
from models.sync_metadata import SyncMetadata

__all__ = [
    "Base",
    "ImportStatus",
    "SeasonStatus",
    "DataKind",
    "League",
    "LeagueTeam",
    "LeaguePlayer",
    "LeaguePlayerStats",
    "LeagueMatchup",
    "LeagueTransaction",
    "HistoricalSnapshot",
    "ImportJob",
    "ImportCheckpoint",
    "SyncMetadata",
]
