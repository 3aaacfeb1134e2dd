"""
Script to backfill league history from the command line
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.logging import setup_logging
from models.base import ImportStatus
from models.league import League
from schemas.imports import LeagueRef
from ingestion.integrity import DataIntegrityChecker
from ingestion.orchestrator import ImportOrchestrator
from ingestion.providers.credentials import SettingsCredentialStore

logger = logging.getLogger(__name__)


async def run_import(league_id: str, start_year: int, end_year: int, force: bool, check: bool) -> int:
    """Run one import in the foreground; returns a process exit code"""
    try:
        async with async_session_maker() as session:
            league = await session.get(League, league_id)
        if league is None:
            logger.error(f"League {league_id} not found")
            return 1

        ref = LeagueRef(
            league_id=league.id,
            provider_league_id=league.provider_league_id,
            credentials_ref=league.credentials_ref,
            sport=league.sport,
        )
        orchestrator = ImportOrchestrator(async_session_maker, SettingsCredentialStore())
        import_id = await orchestrator.create_job(ref, start_year, end_year, force=force)
        progress = await orchestrator.run_import(import_id)

        logger.info(
            f"Import {import_id} finished with status {progress.status.value}: "
            f"{progress.completed_seasons}/{progress.total_seasons} seasons"
        )
        for checkpoint in progress.seasons:
            if checkpoint.error:
                logger.warning(f"Season {checkpoint.season}: {checkpoint.error}")

        if check:
            result = await DataIntegrityChecker(async_session_maker).validate_import(league_id)
            for issue in result.issues:
                logger.info(f"[{issue.type.value}] {issue.category.value}: {issue.description}")

        if progress.status == ImportStatus.FAILED:
            return 1
        return 0 if progress.completed_seasons == progress.total_seasons else 2
    except Exception as e:
        logger.error(f"Import pipeline error: {str(e)}")
        return 1
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Backfill historical seasons for a league")
    parser.add_argument("league_id")
    parser.add_argument("--start", type=int, required=True, help="First season")
    parser.add_argument("--end", type=int, help="Last season (defaults to --start)")
    parser.add_argument("--force", action="store_true", help="Re-import stored seasons")
    parser.add_argument("--check", action="store_true", help="Run an integrity audit afterwards")
    args = parser.parse_args()

    setup_logging()
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    sys.exit(asyncio.run(run_import(
        args.league_id, args.start, args.end or args.start, args.force, args.check
    )))


if __name__ == "__main__":
    main()
