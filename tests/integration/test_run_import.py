"""
Exit codes of the command-line import
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from core.config import settings
from models.base import ImportStatus
from schemas.imports import ImportProgress
from scripts.run_import import run_import


@pytest.fixture
def cli_env(session_factory, monkeypatch):
    """Point the script at the test database; no ESPN cookies configured"""
    monkeypatch.setattr(settings, "ESPN_SWID", None)
    monkeypatch.setattr(settings, "ESPN_S2", None)
    engine = MagicMock()
    engine.dispose = AsyncMock()
    with patch("scripts.run_import.async_session_maker", session_factory), \
            patch("scripts.run_import.engine", engine):
        yield engine


def finished(status, completed, total=3):
    return ImportProgress(
        import_id="imp_cli",
        league_id="league-1",
        status=status,
        start_year=2020,
        end_year=2022,
        total_seasons=total,
        completed_seasons=completed,
    )


@pytest.mark.asyncio
async def test_unknown_league_exits_1(cli_env):
    assert await run_import("missing", 2020, 2022, force=False, check=False) == 1
    cli_env.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_credentials_exits_1(cli_env, league):
    assert await run_import(league.league_id, 2020, 2022, force=False, check=False) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status,completed,expected", [
    (ImportStatus.COMPLETED, 3, 0),
    (ImportStatus.COMPLETED, 2, 2),
    (ImportStatus.FAILED, 0, 1),
])
async def test_exit_code_follows_job_outcome(cli_env, league, status, completed, expected):
    orchestrator = MagicMock()
    orchestrator.create_job = AsyncMock(return_value="imp_cli")
    orchestrator.run_import = AsyncMock(return_value=finished(status, completed))

    with patch("scripts.run_import.ImportOrchestrator", return_value=orchestrator):
        code = await run_import(league.league_id, 2020, 2022, force=True, check=False)

    assert code == expected
    orchestrator.create_job.assert_awaited_once()
    assert orchestrator.create_job.await_args.kwargs == {"force": True}
