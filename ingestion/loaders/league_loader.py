"""
Load normalized league rows with upsert logic (idempotency)
"""

from typing import Dict, List, Optional, Tuple
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from models.base import DataKind
from models.league import (
    LeagueTeam, LeaguePlayer, LeaguePlayerStats, LeagueMatchup, LeagueTransaction
)
from models.snapshot import HistoricalSnapshot
from models.sync_metadata import SyncMetadata
from schemas.league import (
    TeamRow, PlayerRow, PlayerStatsRow, MatchupRow, TransactionRow, SeasonRows
)
import logging

logger = logging.getLogger(__name__)


def dialect_insert(session: AsyncSession, model):
    """INSERT construct with ON CONFLICT support for the session's dialect"""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


class LeagueLoader:
    """
    Load one season of league data with idempotent upserts.

    Ensures:
    - No duplicate rows on repeated runs
    - Updates existing records if source data changes
    - Caller-owned transaction (nothing here commits), so a season is
      written atomically by the orchestrator
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def load_season(self, rows: SeasonRows) -> Dict[str, int]:
        """
        Upsert all rows of a season.

        Returns:
            Rows written per entity
        """
        counts = {
            "teams": await self.upsert_teams(rows.teams),
            "players": await self.upsert_players(rows.players),
            "player_stats": await self.upsert_player_stats(rows.player_stats),
            "matchups": await self.upsert_matchups(rows.matchups),
            "transactions": await self.upsert_transactions(rows.transactions),
        }
        logger.info(
            f"Loaded season rows: {counts['teams']} teams, {counts['players']} players, "
            f"{counts['matchups']} matchups, {counts['transactions']} transactions"
        )
        return counts

    async def upsert_snapshot(
        self,
        league_id: str,
        season: int,
        payload: dict,
        fingerprint: str,
        record_count: int,
        data_kind: DataKind = DataKind.FULL_SEASON
    ) -> None:
        """Insert or overwrite the (league, season, kind) snapshot"""
        stmt = dialect_insert(self.db, HistoricalSnapshot).values(
            league_id=league_id,
            season=season,
            data_kind=data_kind.value,
            payload=payload,
            fingerprint=fingerprint,
            record_count=record_count,
            imported_at=datetime.utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["league_id", "season", "data_kind"],
            set_={
                "payload": stmt.excluded.payload,
                "fingerprint": stmt.excluded.fingerprint,
                "record_count": stmt.excluded.record_count,
                "imported_at": stmt.excluded.imported_at,
            }
        )
        await self.db.execute(stmt)

    async def upsert_teams(self, teams: List[TeamRow]) -> int:
        if not teams:
            return 0

        league_id, season = teams[0].league_id, teams[0].season
        result = await self.db.execute(
            select(LeagueTeam.id, LeagueTeam.external_team_id)
            .where(LeagueTeam.league_id == league_id, LeagueTeam.season == season)
            .order_by(LeagueTeam.id)
        )
        existing: Dict[int, int] = {}
        for row_id, team_id in result.all():
            existing.setdefault(team_id, row_id)

        for team in teams:
            values = team.model_dump()
            row_id = existing.get(team.external_team_id)
            if row_id is None:
                self.db.add(LeagueTeam(**values))
            else:
                await self.db.execute(
                    update(LeagueTeam)
                    .where(LeagueTeam.id == row_id)
                    .values(**values, updated_at=datetime.utcnow())
                )
        await self.db.flush()
        return len(teams)

    async def upsert_players(self, players: List[PlayerRow]) -> int:
        if not players:
            return 0

        league_id = players[0].league_id
        ids = [p.external_player_id for p in players]
        result = await self.db.execute(
            select(LeaguePlayer.id, LeaguePlayer.external_player_id)
            .where(LeaguePlayer.league_id == league_id, LeaguePlayer.external_player_id.in_(ids))
            .order_by(LeaguePlayer.id)
        )
        existing: Dict[int, int] = {}
        for row_id, player_id in result.all():
            existing.setdefault(player_id, row_id)

        for player in players:
            values = player.model_dump()
            row_id = existing.get(player.external_player_id)
            if row_id is None:
                self.db.add(LeaguePlayer(**values))
            else:
                await self.db.execute(
                    update(LeaguePlayer)
                    .where(LeaguePlayer.id == row_id)
                    .values(**values, updated_at=datetime.utcnow())
                )
        await self.db.flush()
        return len(players)

    async def upsert_player_stats(self, stats: List[PlayerStatsRow]) -> int:
        for row in stats:
            stmt = dialect_insert(self.db, LeaguePlayerStats).values(
                **row.model_dump(), updated_at=datetime.utcnow()
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["league_id", "external_player_id", "season"],
                set_={
                    "points": stmt.excluded.points,
                    "projected_points": stmt.excluded.projected_points,
                    "stats": stmt.excluded.stats,
                    "updated_at": stmt.excluded.updated_at,
                }
            )
            await self.db.execute(stmt)
        return len(stats)

    async def upsert_matchups(self, matchups: List[MatchupRow]) -> int:
        """
        Upsert matchups by natural key (league, season, week, home, away).

        When duplicates already exist the lowest id is updated; cleanup is
        left to the dedup and integrity tooling.
        """
        if not matchups:
            return 0

        existing = await self._existing_matchups(matchups[0].league_id, {m.season for m in matchups})

        for matchup in matchups:
            values = matchup.model_dump()
            row_id = existing.get(matchup.natural_key)
            if row_id is None:
                obj = LeagueMatchup(**values)
                self.db.add(obj)
                await self.db.flush()
                existing[matchup.natural_key] = obj.id
            else:
                await self.db.execute(
                    update(LeagueMatchup)
                    .where(LeagueMatchup.id == row_id)
                    .values(**values, updated_at=datetime.utcnow())
                )
        return len(matchups)

    async def _existing_matchups(self, league_id: str, seasons) -> Dict[Tuple, int]:
        result = await self.db.execute(
            select(
                LeagueMatchup.id,
                LeagueMatchup.league_id,
                LeagueMatchup.season,
                LeagueMatchup.week,
                LeagueMatchup.home_team_id,
                LeagueMatchup.away_team_id,
            )
            .where(LeagueMatchup.league_id == league_id, LeagueMatchup.season.in_(list(seasons)))
            .order_by(LeagueMatchup.id)
        )
        existing: Dict[Tuple, int] = {}
        for row in result.all():
            existing.setdefault(tuple(row[1:]), row[0])
        return existing

    async def upsert_sync_metadata(
        self,
        league_id: str,
        last_synced_season: Optional[int] = None,
        last_synced_week: Optional[int] = None
    ) -> SyncMetadata:
        """
        Refresh the league's sync watermark and stored-data totals.

        The watermark season only moves forward: an older season leaves
        season and week untouched, a newer one replaces both. Within the
        same season the week may also move back.
        """
        total_seasons = await self._count(
            select(func.count(func.distinct(HistoricalSnapshot.season)))
            .where(HistoricalSnapshot.league_id == league_id)
        )
        total_matchups = await self._count(
            select(func.count(LeagueMatchup.id)).where(LeagueMatchup.league_id == league_id)
        )
        total_players = await self._count(
            select(func.count(LeaguePlayer.id)).where(LeaguePlayer.league_id == league_id)
        )

        now = datetime.utcnow()
        metadata = await self.db.get(SyncMetadata, league_id)
        if metadata is None:
            metadata = SyncMetadata(league_id=league_id)
            self.db.add(metadata)
        metadata.last_synced_at = now
        stored_season = metadata.last_synced_season
        if last_synced_season is None or last_synced_season == stored_season:
            if last_synced_week is not None:
                metadata.last_synced_week = last_synced_week
        elif stored_season is None or last_synced_season > stored_season:
            metadata.last_synced_season = last_synced_season
            metadata.last_synced_week = last_synced_week
        metadata.total_seasons = total_seasons
        metadata.total_matchups = total_matchups
        metadata.total_players = total_players
        metadata.updated_at = now
        await self.db.flush()
        return metadata

    async def _count(self, stmt) -> int:
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def upsert_transactions(self, transactions: List[TransactionRow]) -> int:
        for row in transactions:
            stmt = dialect_insert(self.db, LeagueTransaction).values(
                **row.model_dump(mode="json", exclude={"transaction_date"}),
                transaction_date=row.transaction_date,
                updated_at=datetime.utcnow()
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["league_id", "transaction_id", "season"],
                set_={
                    "type": stmt.excluded.type,
                    "status": stmt.excluded.status,
                    "team_id": stmt.excluded.team_id,
                    "bid_amount": stmt.excluded.bid_amount,
                    "transaction_date": stmt.excluded.transaction_date,
                    "payload": stmt.excluded.payload,
                    "updated_at": stmt.excluded.updated_at,
                }
            )
            await self.db.execute(stmt)
        return len(transactions)
