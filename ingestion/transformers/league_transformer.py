"""
Transform raw ESPN season payloads into normalized league rows with Pydantic validation
"""

from typing import Dict, Any, Optional, List
from datetime import datetime
from schemas.league import (
    TeamRow, PlayerRow, PlayerStatsRow, MatchupRow, TransactionRow, SeasonRows
)
import logging

logger = logging.getLogger(__name__)

# ESPN defaultPositionId -> position code
POSITION_MAP = {
    1: "QB",
    2: "RB",
    3: "WR",
    4: "TE",
    5: "K",
    16: "D/ST",
}

# ESPN stat sources / splits
ACTUAL_STAT_SOURCE = 0
PROJECTED_STAT_SOURCE = 1
SEASON_STAT_SPLIT = 0


class LeagueTransformer:
    """
    Normalize one season of provider data into row schemas.

    Handles:
    - Schema mapping (ESPN field names to columns)
    - Type conversion
    - Skipping records that cannot be keyed (bye-week matchups, id-less entities)
    """

    def __init__(self, league_id: str, season: int):
        self.league_id = league_id
        self.season = season

    def transform_season(self, payload: Dict[str, Any]) -> SeasonRows:
        """
        Normalize a season payload of the form
        {"league": {...}, "matchups": [...], "players": [...], "transactions": [...]}.

        Returns:
            Validated SeasonRows
        """
        players = payload.get("players") or []
        return SeasonRows(
            teams=self.transform_teams(payload.get("league") or {}),
            players=self.transform_players(players),
            player_stats=self.transform_player_stats(players),
            matchups=self.transform_matchups(payload.get("matchups") or []),
            transactions=self.transform_transactions(payload.get("transactions") or []),
        )

    def transform_teams(self, league_data: Dict[str, Any]) -> List[TeamRow]:
        rows = []
        for team in league_data.get("teams") or []:
            if team.get("id") is None:
                continue
            overall = (team.get("record") or {}).get("overall") or {}
            rows.append(TeamRow(
                league_id=self.league_id,
                season=self.season,
                external_team_id=team["id"],
                name=self._team_name(team),
                abbreviation=team.get("abbrev"),
                wins=self._parse_int(overall.get("wins")) or 0,
                losses=self._parse_int(overall.get("losses")) or 0,
                ties=self._parse_int(overall.get("ties")) or 0,
                points_for=self._parse_float(overall.get("pointsFor")) or 0.0,
                points_against=self._parse_float(overall.get("pointsAgainst")) or 0.0,
                standing=self._parse_int(team.get("rankCalculatedFinal") or team.get("playoffSeed")),
                playoff_seed=self._parse_int(team.get("playoffSeed")),
            ))
        return rows

    def transform_players(self, players: List[Dict[str, Any]]) -> List[PlayerRow]:
        rows = []
        for player in players:
            if player.get("id") is None:
                continue
            pro_team = player.get("proTeamId")
            rows.append(PlayerRow(
                league_id=self.league_id,
                external_player_id=player["id"],
                name=player.get("fullName"),
                position=POSITION_MAP.get(player.get("defaultPositionId")),
                pro_team=str(pro_team) if pro_team is not None else None,
            ))
        return rows

    def transform_player_stats(self, players: List[Dict[str, Any]]) -> List[PlayerStatsRow]:
        rows = []
        for player in players:
            if player.get("id") is None:
                continue
            actual = self._season_stat(player, ACTUAL_STAT_SOURCE)
            projected = self._season_stat(player, PROJECTED_STAT_SOURCE)
            rows.append(PlayerStatsRow(
                league_id=self.league_id,
                external_player_id=player["id"],
                season=self.season,
                points=self._parse_float(actual.get("appliedTotal")) or 0.0,
                projected_points=self._parse_float(projected.get("appliedTotal")) or 0.0,
                stats=actual.get("stats") or {},
            ))
        return rows

    def transform_matchups(self, matchups: List[Dict[str, Any]]) -> List[MatchupRow]:
        rows = []
        for matchup in matchups:
            home = matchup.get("home") or {}
            away = matchup.get("away") or {}
            period = self._parse_int(matchup.get("matchupPeriodId"))
            if home.get("teamId") is None or away.get("teamId") is None or not period:
                logger.debug(f"Skipping unkeyed matchup {matchup.get('id')} in season {self.season}")
                continue
            rows.append(MatchupRow(
                league_id=self.league_id,
                season=self.season,
                week=period,
                matchup_period=period,
                home_team_id=home["teamId"],
                away_team_id=away["teamId"],
                home_score=self._parse_float(home.get("totalPoints")),
                away_score=self._parse_float(away.get("totalPoints")),
                is_playoffs=matchup.get("playoffTierType", "NONE") != "NONE",
                is_complete=matchup.get("winner", "UNDECIDED") != "UNDECIDED",
            ))
        return rows

    def transform_transactions(self, transactions: List[Dict[str, Any]]) -> List[TransactionRow]:
        rows = []
        for transaction in transactions:
            if not transaction.get("id"):
                continue
            rows.append(TransactionRow(
                league_id=self.league_id,
                transaction_id=str(transaction["id"]),
                season=self.season,
                type=transaction.get("type"),
                status=transaction.get("status"),
                team_id=self._parse_int(transaction.get("teamId")),
                bid_amount=self._parse_float(transaction.get("bidAmount")),
                transaction_date=self._parse_epoch_ms(transaction.get("proposedDate")),
                payload=transaction,
            ))
        return rows

    def _season_stat(self, player: Dict[str, Any], source: int) -> Dict[str, Any]:
        for stat in player.get("stats") or []:
            if (
                stat.get("statSourceId") == source
                and stat.get("statSplitTypeId") == SEASON_STAT_SPLIT
                and stat.get("seasonId", self.season) == self.season
            ):
                return stat
        return {}

    @staticmethod
    def _team_name(team: Dict[str, Any]) -> Optional[str]:
        if team.get("name"):
            return team["name"]
        parts = [team.get("location"), team.get("nickname")]
        joined = " ".join(p for p in parts if p)
        return joined or None

    @staticmethod
    def _parse_float(value: Any) -> Optional[float]:
        """Safely parse float value"""
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_int(value: Any) -> Optional[int]:
        """Safely parse int value"""
        if value is None or value == "":
            return None
        try:
            return int(float(value))  # Handle "10.0" strings
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_epoch_ms(value: Any) -> Optional[datetime]:
        """ESPN dates are epoch milliseconds"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        try:
            return datetime.utcfromtimestamp(float(value) / 1000)
        except (ValueError, TypeError, OverflowError, OSError):
            return None
