"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from datetime import datetime
from types import SimpleNamespace
from typing import AsyncGenerator, Any, Dict, List, Optional, Set
from models.base import Base
from models.league import League
from core.exceptions import AuthenticationError, NetworkError, ResourceNotFoundError
from schemas.imports import LeagueRef
from ingestion.events import InMemoryEventBus
from ingestion.orchestrator import ImportOrchestrator
from ingestion.progress import ProgressTracker
from ingestion.providers.credentials import EspnCredentials, StaticCredentialStore
from ingestion.providers.espn_client import ProviderClient

LEAGUE_ID = "league-1"
PROVIDER_LEAGUE_ID = 12345


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite so every session gets its own connection"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def league(session_factory) -> LeagueRef:
    """A registered league with provider id and credentials reference"""
    async with session_factory() as session:
        session.add(League(
            id=LEAGUE_ID,
            provider_league_id=PROVIDER_LEAGUE_ID,
            credentials_ref="cred-1",
            name="Test League",
        ))
        await session.commit()
    return LeagueRef(league_id=LEAGUE_ID, provider_league_id=PROVIDER_LEAGUE_ID, credentials_ref="cred-1")


# ============================================================================
# Provider payloads (ESPN v3 shapes)
# ============================================================================

def build_league_payload(season: int, team_count: int = 4, weeks: int = 2) -> Dict[str, Any]:
    teams = []
    for team_id in range(1, team_count + 1):
        teams.append({
            "id": team_id,
            "location": "Team",
            "nickname": str(team_id),
            "abbrev": f"T{team_id}",
            "playoffSeed": team_id,
            "record": {"overall": {
                "wins": 1, "losses": 1, "ties": 0,
                "pointsFor": 200.5, "pointsAgainst": 190.25,
            }},
            "roster": {"entries": [{"playerPoolEntry": {"player": {
                "id": 1000 * team_id + 1,
                "fullName": f"Player {team_id}",
                "defaultPositionId": 2,
                "proTeamId": 17,
                "stats": [
                    {"statSourceId": 0, "statSplitTypeId": 0, "seasonId": season,
                     "appliedTotal": 150.5, "stats": {"24": 900.0}},
                    {"statSourceId": 1, "statSplitTypeId": 0, "seasonId": season,
                     "appliedTotal": 140.0, "stats": {}},
                ],
            }}}]},
        })
    return {
        "id": PROVIDER_LEAGUE_ID,
        "seasonId": season,
        "settings": {"name": "Test League", "scheduleSettings": {"matchupPeriodCount": weeks}},
        "teams": teams,
    }


def build_matchups(weeks: int = 2, team_count: int = 4, start_week: int = 1) -> List[Dict[str, Any]]:
    matchups = []
    for week in range(start_week, weeks + 1):
        for home in range(1, team_count + 1, 2):
            matchups.append({
                "id": len(matchups) + 1,
                "matchupPeriodId": week,
                "home": {"teamId": home, "totalPoints": 100.0 + week},
                "away": {"teamId": home + 1, "totalPoints": 90.0 + week},
                "winner": "HOME",
                "playoffTierType": "NONE",
            })
    return matchups


def build_transactions(season: int, count: int = 2) -> List[Dict[str, Any]]:
    proposed = int(datetime(season, 10, 1).timestamp() * 1000)
    return [
        {
            "id": f"tx-{season}-{n}",
            "type": "WAIVER",
            "status": "EXECUTED",
            "teamId": 1,
            "bidAmount": 5,
            "proposedDate": proposed + n,
        }
        for n in range(count)
    ]


def build_season(season: int, team_count: int = 4, weeks: int = 2) -> Dict[str, Any]:
    return {
        "league": build_league_payload(season, team_count, weeks),
        "matchups": build_matchups(weeks, team_count),
        "transactions": build_transactions(season),
    }


class FakeProvider:
    """
    In-memory provider keyed by season.

    Attributes:
        failing_seasons: get_league raises NetworkError for these seasons
        failing_weeks: get_scoreboard raises NetworkError for these weeks
        rejected_seasons: every endpoint answers 401 for these seasons
        league_calls: seasons whose league endpoint was requested, in order
    """

    def __init__(self, seasons: Optional[Dict[int, Dict[str, Any]]] = None):
        self.seasons: Dict[int, Dict[str, Any]] = dict(seasons or {})
        self.failing_seasons: Set[int] = set()
        self.failing_weeks: Set[int] = set()
        self.rejected_seasons: Set[int] = set()
        self.league_calls: List[int] = []
        self.scoreboard_calls: List[int] = []

    def factory(self, league: LeagueRef, season: int, credentials: EspnCredentials) -> ProviderClient:
        return FakeProviderClient(self, league.provider_league_id, season)


class FakeProviderClient(ProviderClient):

    def __init__(self, provider: FakeProvider, provider_league_id: int, season: int):
        self.provider = provider
        self.provider_league_id = provider_league_id
        self.season = season

    def _data(self) -> Dict[str, Any]:
        if self.season in self.provider.rejected_seasons:
            raise AuthenticationError(
                f"Authentication failed for season {self.season}",
                context={"status_code": 401}
            )
        data = self.provider.seasons.get(self.season)
        if data is None:
            raise ResourceNotFoundError(f"No data for season {self.season}")
        return data

    async def get_league(self) -> Dict[str, Any]:
        self.provider.league_calls.append(self.season)
        if self.season in self.provider.failing_seasons:
            raise NetworkError(f"Provider unavailable for season {self.season}")
        return self._data()["league"]

    async def get_scoreboard(self, week: int) -> Dict[str, Any]:
        self.provider.scoreboard_calls.append(week)
        if week in self.provider.failing_weeks:
            raise NetworkError(f"Scoreboard unavailable for week {week}")
        # ESPN returns the whole schedule; callers filter by matchupPeriodId
        return {"schedule": self._data()["matchups"]}

    async def get_transactions(self, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        return self._data()["transactions"][offset:offset + limit]


@pytest.fixture
def payloads():
    """Builders for ESPN-shaped payloads"""
    return SimpleNamespace(
        season=build_season,
        league=build_league_payload,
        matchups=build_matchups,
        transactions=build_transactions,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider({season: build_season(season) for season in (2020, 2021, 2022)})


@pytest.fixture
def credentials() -> EspnCredentials:
    return EspnCredentials(swid="{ABC-123}", espn_s2="s2-cookie")


@pytest.fixture
def credential_store(credentials) -> StaticCredentialStore:
    return StaticCredentialStore({"cred-1": credentials})


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def tracker(session_factory, event_bus) -> ProgressTracker:
    return ProgressTracker(session_factory, event_bus=event_bus)


@pytest.fixture
def orchestrator(session_factory, credential_store, provider, event_bus, tracker) -> ImportOrchestrator:
    return ImportOrchestrator(
        session_factory,
        credential_store,
        client_factory=provider.factory,
        event_bus=event_bus,
        tracker=tracker,
        week_delay=0,
        season_fetch_delay=0,
        transaction_page_delay=0,
        between_season_delay=0,
    )
