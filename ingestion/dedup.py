"""
Content fingerprints, in-memory deduplication and duplicate cleanup.

fingerprint() and deduplicate() are pure; DeduplicationService wraps the
existence checks and the persisted-duplicate cleanup that need a database.
"""

import hashlib
import json
from enum import Enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set, Union
from sqlalchemy import select, delete, func, case, and_, or_
from sqlalchemy.ext.asyncio import async_sessionmaker
from models.base import DataKind
from models.league import LeagueMatchup, LeaguePlayer, LeagueTransaction
from models.snapshot import HistoricalSnapshot
from schemas.imports import ValidationReport
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Stripped before hashing so re-fetches of unchanged data hash equal
VOLATILE_FIELDS = frozenset({"createdAt", "updatedAt", "timestamp", "importedAt"})


class EntityKind(str, Enum):
    PLAYER = "player"
    MATCHUP = "matchup"
    TRANSACTION = "transaction"


# ============================================================================
# Fingerprints
# ============================================================================

def normalize(value: Any, volatile_fields: Iterable[str] = VOLATILE_FIELDS) -> Any:
    """
    Order-independent form of a JSON-like value.

    Object keys are sorted, volatile keys dropped, and array elements
    sorted by their canonical serialization.
    """
    volatile = volatile_fields if isinstance(volatile_fields, frozenset) else frozenset(volatile_fields)
    if isinstance(value, dict):
        return {
            key: normalize(value[key], volatile)
            for key in sorted(value, key=str)
            if key not in volatile
        }
    if isinstance(value, (list, tuple)):
        items = [normalize(item, volatile) for item in value]
        return sorted(items, key=_dumps)
    return value


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def canonical_json(value: Any, volatile_fields: Iterable[str] = VOLATILE_FIELDS) -> str:
    """Canonical serialization used for hashing and size comparisons"""
    return _dumps(normalize(value, volatile_fields))


def fingerprint(record: Any, volatile_fields: Iterable[str] = VOLATILE_FIELDS) -> str:
    """SHA-256 hex digest of the canonical form of a record"""
    return hashlib.sha256(canonical_json(record, volatile_fields).encode("utf-8")).hexdigest()


# ============================================================================
# In-memory deduplication
# ============================================================================

def dedup_key(record: Dict[str, Any], kind: EntityKind, season: Optional[int] = None) -> str:
    """Composite key of a provider record"""
    if kind == EntityKind.PLAYER:
        return f"{record.get('id')}_{record.get('seasonId', season) or ''}"
    if kind == EntityKind.MATCHUP:
        teams = sorted(
            [(record.get("home") or {}).get("teamId"), (record.get("away") or {}).get("teamId")],
            key=lambda t: (t is None, str(t))
        )
        return f"{record.get('matchupPeriodId')}_{teams[0]}_{teams[1]}"
    if kind == EntityKind.TRANSACTION:
        return f"{record.get('id')}_{record.get('proposedDate')}"
    raise ValueError(f"Unknown entity kind: {kind}")


def deduplicate(
    collection: List[Dict[str, Any]],
    kind: Union[EntityKind, str],
    season: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Drop records sharing a composite key.

    On collision the record with the larger canonical serialization wins
    (a completeness proxy, not a field-level merge). First-seen order of
    keys is preserved.
    """
    kind = EntityKind(kind)
    kept: Dict[str, Dict[str, Any]] = {}
    sizes: Dict[str, int] = {}

    for record in collection:
        key = dedup_key(record, kind, season)
        size = len(canonical_json(record))
        if key not in kept or size > sizes[key]:
            kept[key] = record
            sizes[key] = size

    removed = len(collection) - len(kept)
    if removed:
        logger.debug(f"Removed {removed} duplicate {kind.value} records")
    return list(kept.values())


# ============================================================================
# Pre-storage validation
# ============================================================================

def validate_season_data(payload: Dict[str, Any], max_score: Optional[float] = None) -> ValidationReport:
    """
    Gate a season payload before storage.

    Errors block storage of the season; warnings are surfaced only.
    Matchups without both team ids (bye weeks) are warnings.
    """
    max_score = settings.MAX_MATCHUP_SCORE if max_score is None else max_score
    errors: List[str] = []
    warnings: List[str] = []
    league = payload.get("league") or {}

    if not league.get("id"):
        errors.append("Missing league ID")
    if not league.get("seasonId"):
        errors.append("Missing season ID")

    teams = league.get("teams") or []
    if not teams:
        errors.append("No teams found")
    elif len(teams) < 4:
        warnings.append(f"Only {len(teams)} teams found")

    matchups = payload.get("matchups") or []
    if not matchups:
        errors.append("No matchups found")
    for index, matchup in enumerate(matchups):
        home = matchup.get("home") or {}
        away = matchup.get("away") or {}
        if home.get("teamId") is None or away.get("teamId") is None:
            warnings.append(f"Matchup {index} missing team IDs")
        points = [p for p in (home.get("totalPoints"), away.get("totalPoints")) if p is not None]
        if any(p < 0 for p in points):
            warnings.append(f"Matchup {index} has negative points")
        if any(p > max_score for p in points):
            warnings.append(f"Matchup {index} has unusually high points (>{max_score:g})")

    players = payload.get("players") or []
    if not players:
        warnings.append("No players found")
    else:
        invalid_players = sum(1 for p in players if not p.get("id") or not p.get("fullName"))
        if invalid_players:
            warnings.append(f"{invalid_players} players missing required fields")

    if not payload.get("transactions"):
        warnings.append("No transactions found (this may be normal for some leagues)")

    return ValidationReport(valid=not errors, errors=errors, warnings=warnings)


# ============================================================================
# Persisted duplicates
# ============================================================================

class MatchupKey(NamedTuple):
    season: int
    week: int
    home_team_id: int
    away_team_id: int


class PlayerKey(NamedTuple):
    external_player_id: int


class TransactionKey(NamedTuple):
    transaction_id: str
    season: int


NaturalKey = Union[MatchupKey, PlayerKey, TransactionKey]


def matchup_group_columns():
    """(season, week, low team, high team): duplicate group of a matchup in either orientation"""
    low = case(
        (LeagueMatchup.home_team_id <= LeagueMatchup.away_team_id, LeagueMatchup.home_team_id),
        else_=LeagueMatchup.away_team_id
    )
    high = case(
        (LeagueMatchup.home_team_id <= LeagueMatchup.away_team_id, LeagueMatchup.away_team_id),
        else_=LeagueMatchup.home_team_id
    )
    return LeagueMatchup.season, LeagueMatchup.week, low, high


def redundant_matchup_ids(league_id: str, keep_newest: bool):
    """
    Select of matchup ids that are redundant copies within their duplicate group.

    keep_newest keeps the highest id per group, otherwise the lowest.
    """
    order = LeagueMatchup.id.desc() if keep_newest else LeagueMatchup.id.asc()
    ranked = (
        select(
            LeagueMatchup.id.label("id"),
            func.row_number().over(partition_by=matchup_group_columns(), order_by=order).label("rn"),
        )
        .where(LeagueMatchup.league_id == league_id)
        .subquery()
    )
    return select(ranked.c.id).where(ranked.c.rn > 1)


class DeduplicationService:
    """Existence checks and duplicate cleanup against the store"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def exists(self, league_id: str, key: NaturalKey) -> bool:
        """Whether a row with the natural key is already stored"""
        if isinstance(key, MatchupKey):
            stmt = select(LeagueMatchup.id).where(
                LeagueMatchup.league_id == league_id,
                LeagueMatchup.season == key.season,
                LeagueMatchup.week == key.week,
                or_(
                    and_(LeagueMatchup.home_team_id == key.home_team_id,
                         LeagueMatchup.away_team_id == key.away_team_id),
                    and_(LeagueMatchup.home_team_id == key.away_team_id,
                         LeagueMatchup.away_team_id == key.home_team_id),
                )
            )
        elif isinstance(key, PlayerKey):
            stmt = select(LeaguePlayer.id).where(
                LeaguePlayer.league_id == league_id,
                LeaguePlayer.external_player_id == key.external_player_id
            )
        elif isinstance(key, TransactionKey):
            stmt = select(LeagueTransaction.id).where(
                LeagueTransaction.league_id == league_id,
                LeagueTransaction.transaction_id == str(key.transaction_id),
                LeagueTransaction.season == key.season
            )
        else:
            raise TypeError(f"Unsupported key type: {type(key).__name__}")

        async with self.session_factory() as session:
            result = await session.execute(stmt.limit(1))
            return result.first() is not None

    async def batch_check_existence(
        self,
        league_id: str,
        season: int,
        player_ids: Iterable[int],
        transaction_ids: Iterable[Union[str, int]]
    ) -> Dict[str, Set[str]]:
        """Resolve many player and transaction ids, one query per table"""
        player_ids = list(player_ids)
        transaction_ids = [str(t) for t in transaction_ids]
        existing_players: Set[str] = set()
        existing_transactions: Set[str] = set()

        async with self.session_factory() as session:
            if player_ids:
                result = await session.execute(
                    select(LeaguePlayer.external_player_id).where(
                        LeaguePlayer.league_id == league_id,
                        LeaguePlayer.external_player_id.in_(player_ids)
                    )
                )
                existing_players = {str(r) for r in result.scalars().all()}
            if transaction_ids:
                result = await session.execute(
                    select(LeagueTransaction.transaction_id).where(
                        LeagueTransaction.league_id == league_id,
                        LeagueTransaction.season == season,
                        LeagueTransaction.transaction_id.in_(transaction_ids)
                    )
                )
                existing_transactions = set(result.scalars().all())

        return {"existing_players": existing_players, "existing_transactions": existing_transactions}

    async def season_data_exists(
        self,
        league_id: str,
        season: int,
        data_kind: DataKind = DataKind.FULL_SEASON
    ) -> Optional[str]:
        """Stored fingerprint of the season snapshot, or None"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(HistoricalSnapshot.fingerprint).where(
                    HistoricalSnapshot.league_id == league_id,
                    HistoricalSnapshot.season == season,
                    HistoricalSnapshot.data_kind == data_kind.value
                )
            )
            return result.scalar_one_or_none()

    async def clean_duplicates(self, league_id: str) -> int:
        """
        Delete persisted duplicate matchups, keeping the most recently
        inserted row per group. Re-running deletes nothing.

        Returns:
            Number of rows deleted
        """
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(redundant_matchup_ids(league_id, keep_newest=True))
                ids = list(result.scalars().all())
                if ids:
                    await session.execute(delete(LeagueMatchup).where(LeagueMatchup.id.in_(ids)))

        if ids:
            logger.info(f"Removed {len(ids)} duplicate matchups for league {league_id}")
        return len(ids)
