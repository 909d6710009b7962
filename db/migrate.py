#!/usr/bin/env python3
"""
AgBot webhook database migration runner.

Usage:
    python3 db/migrate.py

Reads DATABASE_URL from environment. Applies all *.sql files in
db/migrations/ in numeric filename order, each in its own transaction.
Skips already-applied migrations. Exits non-zero on any error.
"""

import asyncio
import logging
import os
import re
import sys
from pathlib import Path

import asyncpg

logging.basicConfig(
    level=logging.INFO,
    format='{"ts":"%(asctime)s","level":"%(levelname)s","msg":"%(message)s"}',
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger("migrator")

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

CREATE_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version     TEXT        NOT NULL PRIMARY KEY,
    filename    TEXT        NOT NULL,
    applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def get_migration_files(directory: Path = MIGRATIONS_DIR) -> list[tuple[str, Path]]:
    files: list[tuple[str, Path]] = []
    for file_path in directory.glob("*.sql"):
        match = re.match(r"^(\d+)", file_path.name)
        if match:
            files.append((match.group(1), file_path))
    return sorted(files, key=lambda item: int(item[0]))


async def run_migrations(conn, directory: Path = MIGRATIONS_DIR) -> int:
    await conn.execute(CREATE_TRACKING_TABLE)

    migration_files = get_migration_files(directory)
    if not migration_files:
        logger.warning(f"No migration files found in {directory}")
        return 0

    applied = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}
    applied_count = 0
    for version, file_path in migration_files:
        if version in applied:
            logger.info(f"Skipping {file_path.name}, already applied")
            continue

        logger.info(f"Applying {file_path.name}")
        sql = file_path.read_text(encoding="utf-8")
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
                version,
                file_path.name,
            )
        logger.info(f"Applied {file_path.name} successfully")
        applied_count += 1

    return applied_count


async def main() -> int:
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        logger.error("DATABASE_URL environment variable is not set")
        return 1

    logger.info("Starting migration runner")
    conn = await asyncpg.connect(db_url)
    try:
        applied = await run_migrations(conn)
    except asyncpg.PostgresError as exc:
        logger.error(f"Migration FAILED: {exc}")
        return 1
    finally:
        await conn.close()
    logger.info(f"Migration complete. {applied} migration(s) applied.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
