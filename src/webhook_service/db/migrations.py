"""SQL migrations applied on application startup."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)


async def ensure_schema_table(conn: asyncpg.Connection) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )


def load_migrations(directory: Path) -> dict[str, Path]:
    migrations: dict[str, Path] = {}
    for path in sorted(directory.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        migrations[version] = path
    return migrations


async def _connect(database_url: str, *, max_retries: int = 5, retry_delay: float = 2.0) -> asyncpg.Connection:
    for attempt in range(1, max_retries + 1):
        try:
            return await asyncpg.connect(database_url)
        except (OSError, asyncpg.PostgresError) as exc:
            if attempt == max_retries:
                raise
            logger.warning(
                "database not reachable, retrying",
                attempt=attempt,
                max_retries=max_retries,
                error=str(exc),
            )
            await asyncio.sleep(retry_delay)
    raise RuntimeError("unreachable")


async def apply_migrations(database_url: str, migrations_dir: Path) -> list[str]:
    """Apply pending ``*.sql`` files in lexical order; returns applied versions."""
    migrations = load_migrations(migrations_dir)
    if not migrations:
        logger.warning("no migrations found", migrations_dir=str(migrations_dir))
        return []

    conn = await _connect(database_url)
    applied_now: list[str] = []
    try:
        await ensure_schema_table(conn)
        rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
        applied = {row["version"]: row["checksum"] for row in rows}

        for version, path in migrations.items():
            sql = path.read_text(encoding="utf-8")
            checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
            if version in applied:
                if applied[version] != checksum:
                    raise RuntimeError(
                        f"Checksum mismatch for {version}: "
                        f"{applied[version]} (db) != {checksum} (file)"
                    )
                continue
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                    version,
                    checksum,
                )
            applied_now.append(version)
            logger.info("migration applied", version=version)
    finally:
        await conn.close()
    return applied_now


def create_migration_runner(
    database_url: str,
    possible_paths: Iterable[Path],
) -> Callable[[web.Application], Awaitable[None]]:
    """Create an aiohttp startup hook that applies pending migrations."""
    paths = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = next((p for p in paths if p.exists()), None)
        if migrations_dir is None:
            logger.warning("migrations directory not found, skipping", tried=[str(p) for p in paths])
            return
        await apply_migrations(database_url, migrations_dir)

    return apply_migrations_on_startup
