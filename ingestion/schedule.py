"""
Season calendars used to decide which season and week are "current".

The incremental sync planner never computes dates itself; it asks a
SeasonSchedule. AnchoredSeasonSchedule is parameterized by sport and by
explicit per-season start dates, and falls back to the first Thursday
after Labor Day for seasons it has no date for.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Dict, Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class SeasonSchedule(ABC):
    """Calendar of one sport's seasons"""

    sport: str

    @abstractmethod
    def season_start(self, season: int) -> date:
        """Date of the first game of the regular season"""
        pass

    @abstractmethod
    def current_season(self, now: Optional[datetime] = None) -> int:
        """Season label in effect at `now`"""
        pass

    @abstractmethod
    def current_week(self, now: Optional[datetime] = None) -> int:
        """Regular season week in effect at `now`, within [1, regular_season_weeks]"""
        pass

    @abstractmethod
    def has_started(self, now: Optional[datetime] = None) -> bool:
        """Whether the current season's first game has been played"""
        pass


def first_thursday_after_labor_day(year: int) -> date:
    """Labor Day is the first Monday of September; kickoff is the Thursday after"""
    september_first = date(year, 9, 1)
    labor_day = september_first + timedelta(days=(0 - september_first.weekday()) % 7)
    return labor_day + timedelta(days=3)


class AnchoredSeasonSchedule(SeasonSchedule):
    """
    Weekly schedule anchored on each season's start date.

    Weeks are counted in whole 7-day blocks from the anchor and clamped to
    the regular season. A season is labelled by the year it starts in, so
    January and February still belong to the previous year's season.
    """

    def __init__(
        self,
        sport: str = "ffl",
        start_dates: Optional[Dict[int, date]] = None,
        regular_season_weeks: int = 18,
        season_rollover_month: int = 3
    ):
        self.sport = sport
        self.start_dates = dict(start_dates or {})
        self.regular_season_weeks = regular_season_weeks
        self.season_rollover_month = season_rollover_month

    def season_start(self, season: int) -> date:
        anchor = self.start_dates.get(season)
        if anchor is None:
            anchor = first_thursday_after_labor_day(season)
            logger.debug(f"No start date configured for {self.sport} {season}, using {anchor}")
        return anchor

    def current_season(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        if now.month < self.season_rollover_month:
            return now.year - 1
        return now.year

    def has_started(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return now.date() >= self.season_start(self.current_season(now))

    def current_week(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        start = self.season_start(self.current_season(now))
        elapsed_weeks = (now.date() - start).days // 7
        return min(max(1, elapsed_weeks + 1), self.regular_season_weeks)


def default_schedule() -> AnchoredSeasonSchedule:
    """Schedule built from application settings"""
    return AnchoredSeasonSchedule(
        sport=settings.SPORT,
        start_dates=settings.SEASON_START_DATES,
        regular_season_weeks=settings.REGULAR_SEASON_WEEKS
    )
