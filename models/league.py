from sqlalchemy import (
    Column, String, Integer, BigInteger, Float, Boolean, DateTime, Index, UniqueConstraint
)
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class League(Base):
    """
    A fantasy league known to the service.

    Holds what the import pipeline needs to reach the provider:
    the provider's league id and the reference used to look up
    credentials in the credential store.
    """
    __tablename__ = "leagues"

    id = Column(String(64), primary_key=True)
    provider_league_id = Column(BigInteger, nullable=False, index=True)
    credentials_ref = Column(String(64), nullable=True)
    sport = Column(String(20), nullable=False, default="ffl")
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class LeagueTeam(Base):
    """
    Team metadata and standings for one league season.

    Natural key: (league_id, season, external_team_id). Uniqueness is
    enforced by the loader and audited by the integrity checker.
    """
    __tablename__ = "league_teams"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    league_id = Column(String(64), nullable=False)
    season = Column(Integer, nullable=False)
    external_team_id = Column(Integer, nullable=False)

    name = Column(String(255), nullable=True)
    abbreviation = Column(String(10), nullable=True)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    ties = Column(Integer, nullable=False, default=0)
    points_for = Column(Float, nullable=False, default=0)
    points_against = Column(Float, nullable=False, default=0)
    standing = Column(Integer, nullable=True)
    playoff_seed = Column(Integer, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_team_natural_key", "league_id", "season", "external_team_id"),
    )


class LeaguePlayer(Base):
    """Player identity within a league (one row per provider player id)."""
    __tablename__ = "league_players"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    league_id = Column(String(64), nullable=False)
    external_player_id = Column(BigInteger, nullable=False)
    name = Column(String(255), nullable=True)
    position = Column(String(10), nullable=True)
    pro_team = Column(String(10), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_player_natural_key", "league_id", "external_player_id"),
    )


class LeaguePlayerStats(Base):
    """Season point totals for a player in a league."""
    __tablename__ = "league_player_stats"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    league_id = Column(String(64), nullable=False)
    external_player_id = Column(BigInteger, nullable=False)
    season = Column(Integer, nullable=False)
    points = Column(Float, nullable=False, default=0)
    projected_points = Column(Float, nullable=False, default=0)
    stats = Column(JSONType, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("league_id", "external_player_id", "season", name="uq_player_stats_season"),
    )


class LeagueMatchup(Base):
    """
    One head-to-head matchup.

    Team references are provider team ids resolved against
    league_teams for the same league and season.
    """
    __tablename__ = "league_matchups"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    league_id = Column(String(64), nullable=False)
    season = Column(Integer, nullable=False)
    week = Column(Integer, nullable=False)
    matchup_period = Column(Integer, nullable=False)
    home_team_id = Column(Integer, nullable=False)
    away_team_id = Column(Integer, nullable=False)
    home_score = Column(Float, nullable=True)
    away_score = Column(Float, nullable=True)
    is_playoffs = Column(Boolean, nullable=False, default=False)
    is_complete = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_matchup_natural_key", "league_id", "season", "week", "home_team_id", "away_team_id"),
        Index("idx_matchup_league_season_week", "league_id", "season", "week"),
    )


class LeagueTransaction(Base):
    """Waiver, trade and free-agent transactions."""
    __tablename__ = "league_transactions"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    league_id = Column(String(64), nullable=False)
    transaction_id = Column(String(64), nullable=False)
    season = Column(Integer, nullable=False)
    type = Column(String(50), nullable=True)
    status = Column(String(50), nullable=True)
    team_id = Column(Integer, nullable=True)
    bid_amount = Column(Float, nullable=True)
    transaction_date = Column(DateTime, nullable=True, index=True)
    payload = Column(JSONType, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("league_id", "transaction_id", "season", name="uq_transaction_season"),
    )
