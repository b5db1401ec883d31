"""Command line entry point: python -m progress_engine.main apply-schema"""
import argparse
import asyncio
import logging
import sys

import psycopg

from progress_engine.config import LOG_LEVEL, validate_config
from progress_engine.db.connection import db
from progress_engine.db.store import PostgresStore
from progress_engine.exceptions import ProgressEngineError, wrap_store_exception
from progress_engine.gamification import AchievementEvaluator, XPCalculator, default_achievement_catalog

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)


async def apply_schema() -> None:
    """Create tables and seed the achievement catalog"""
    try:
        logger.info("Validating configuration...")
        validate_config()

        logger.info("Initializing database connection pool...")
        await db.init_pool()

        await db.apply_schema()

        store = PostgresStore()
        evaluator = AchievementEvaluator(store, XPCalculator(store), default_achievement_catalog())
        count = await evaluator.sync_catalog()
        logger.info(f"Seeded {count} achievements")
    except psycopg.Error as e:
        raise wrap_store_exception(e, operation="apply_schema") from e
    finally:
        logger.info("Closing database connection...")
        await db.close_pool()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="progress_engine", description="Progress & rewards engine tools")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("apply-schema", help="Create tables and seed the achievement catalog")
    args = parser.parse_args(argv)

    if args.command == "apply-schema":
        try:
            asyncio.run(apply_schema())
        except ProgressEngineError as e:
            logger.error(f"apply-schema failed: {e.message}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
