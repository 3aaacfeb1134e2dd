"""
Pydantic schemas for normalized league rows with validation
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class TeamRow(BaseModel):
    """Team metadata and standings for one season"""
    league_id: str
    season: int
    external_team_id: int
    name: Optional[str] = Field(None, max_length=255)
    abbreviation: Optional[str] = Field(None, max_length=10)
    wins: int = 0
    losses: int = 0
    ties: int = 0
    points_for: float = 0
    points_against: float = 0
    standing: Optional[int] = None
    playoff_seed: Optional[int] = None

    @validator("name", "abbreviation")
    def clean_text(cls, v):
        """Blank strings are stored as NULL"""
        if v is None:
            return None
        v = v.strip()
        return v or None


class PlayerRow(BaseModel):
    """Player identity within a league"""
    league_id: str
    external_player_id: int
    name: Optional[str] = Field(None, max_length=255)
    position: Optional[str] = Field(None, max_length=10)
    pro_team: Optional[str] = Field(None, max_length=10)

    @validator("name")
    def clean_name(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None


class PlayerStatsRow(BaseModel):
    """Season totals for one player"""
    league_id: str
    external_player_id: int
    season: int
    points: float = 0
    projected_points: float = 0
    stats: Dict[str, Any] = Field(default_factory=dict)

    @validator("stats", pre=True)
    def clean_stats(cls, v):
        """Ensure stats is a dict"""
        if not isinstance(v, dict):
            return {}
        return v


class MatchupRow(BaseModel):
    """One head-to-head matchup"""
    league_id: str
    season: int
    week: int = Field(..., ge=1)
    matchup_period: int = Field(..., ge=1)
    home_team_id: int
    away_team_id: int
    home_score: Optional[float] = None
    away_score: Optional[float] = None
    is_playoffs: bool = False
    is_complete: bool = False

    @property
    def natural_key(self):
        return (self.league_id, self.season, self.week, self.home_team_id, self.away_team_id)


class TransactionRow(BaseModel):
    """Waiver, trade or free-agent move"""
    league_id: str
    transaction_id: str = Field(..., min_length=1, max_length=64)
    season: int
    type: Optional[str] = None
    status: Optional[str] = None
    team_id: Optional[int] = None
    bid_amount: Optional[float] = None
    transaction_date: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class SeasonRows(BaseModel):
    """Everything the loader writes for one season"""
    teams: List[TeamRow] = Field(default_factory=list)
    players: List[PlayerRow] = Field(default_factory=list)
    player_stats: List[PlayerStatsRow] = Field(default_factory=list)
    matchups: List[MatchupRow] = Field(default_factory=list)
    transactions: List[TransactionRow] = Field(default_factory=list)
