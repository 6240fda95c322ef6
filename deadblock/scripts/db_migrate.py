"""Apply the SQL migrations in deadblock/shared/migrations/versions.

Usage:
    python -m deadblock.scripts.db_migrate          # apply pending migrations
    python -m deadblock.scripts.db_migrate --dry    # list pending, apply nothing
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from deadblock.api.core.config import get_settings
from deadblock.shared.database import DatabaseManager, PoolConfig
from deadblock.shared.migrations.runner import MigrationRunner

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


async def run(dry: bool) -> int:
    settings = get_settings()
    if not settings.database_url:
        print("ERROR: DATABASE_URL not set.")
        return 1

    db = DatabaseManager(settings.database_url, PoolConfig.for_service("scripts", ssl=settings.database_ssl))
    await db.connect()
    try:
        runner = MigrationRunner(db.pool)
        if dry:
            pending = await runner.pending()
            print(f"Pending: {len(pending)}")
            for version in pending:
                print(f"  -> {version}")
            return 0

        newly_applied = await runner.run_pending()
        print(f"Applied {len(newly_applied)} migration(s).")
        return 0
    finally:
        await db.disconnect()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry", action="store_true", help="show pending migrations only")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.dry)))


if __name__ == "__main__":
    main()
