"""Database connection management for CampusLink.

The pool is created once per process. Connection details come from
``DATABASE_URL`` when set (local development) and otherwise from AWS
Secrets Manager. Schema migrations run when the pool is first created.
"""

import json
import os
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg

from ..logging import get_logger

logger = get_logger("database")
migration_logger = get_logger("migrations")

# Errors that mean the database could not serve a request
PERSISTENCE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_pool: Optional[asyncpg.Pool] = None


def _pool_size() -> tuple[int, int]:
    min_size = int(os.getenv("CAMPUSLINK_DB_POOL_MIN", "2"))
    max_size = int(os.getenv("CAMPUSLINK_DB_POOL_MAX", "10"))
    return min_size, max(min_size, max_size)


async def get_credentials_from_secrets_manager() -> dict:
    """Fetch database credentials from AWS Secrets Manager."""
    import boto3

    secret_name = os.getenv("DB_SECRET_NAME", "campuslink/db-credentials")
    region = os.getenv("AWS_REGION", "us-east-1")

    logger.debug(f"Fetching database credentials from {secret_name} ({region})")
    client = boto3.client("secretsmanager", region_name=region)
    response = client.get_secret_value(SecretId=secret_name)
    return json.loads(response["SecretString"])


async def init_db() -> asyncpg.Pool:
    """Create the connection pool and apply pending migrations."""
    global _pool
    if _pool is not None:
        return _pool

    min_size, max_size = _pool_size()
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        # Only the host part is logged; the URL carries the password
        logger.info(f"Connecting to {database_url.rsplit('@', 1)[-1]} via DATABASE_URL")
        pool = await asyncpg.create_pool(database_url, min_size=min_size, max_size=max_size)
    else:
        creds = await get_credentials_from_secrets_manager()
        logger.info(f"Connecting to {creds['host']}:{creds.get('port', 5432)} via Secrets Manager")
        pool = await asyncpg.create_pool(
            host=creds["host"],
            port=creds.get("port", 5432),
            user=creds["username"],
            password=creds["password"],
            database=creds.get("database", "campuslink"),
            min_size=min_size,
            max_size=max_size,
        )

    logger.info(f"Connection pool ready (min={min_size}, max={max_size})")
    try:
        await run_migrations(pool)
    except asyncpg.PostgresError:
        await pool.close()
        raise

    _pool = pool
    return _pool


async def get_db_pool() -> asyncpg.Pool:
    """Get the connection pool, creating it on first use."""
    return _pool if _pool is not None else await init_db()


async def close_db():
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Connection pool closed")


@asynccontextmanager
async def get_connection():
    """Borrow a connection from the pool."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        yield conn


async def run_migrations(pool: asyncpg.Pool):
    """Apply every migration in ``MIGRATIONS`` not yet recorded in ``_migrations``.

    Each migration runs in its own transaction together with its bookkeeping
    row, so a failed migration leaves no partial schema behind.
    """
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS _migrations (
                id SERIAL PRIMARY KEY,
                name VARCHAR(255) NOT NULL UNIQUE,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        applied = {row["name"] for row in await conn.fetch("SELECT name FROM _migrations")}
        pending = [(name, sql) for name, sql in MIGRATIONS if name not in applied]

        if not pending:
            migration_logger.info("Schema up to date")
            return

        for name, sql in pending:
            migration_logger.info(f"Applying {name}")
            try:
                async with conn.transaction():
                    await conn.execute(sql)
                    await conn.execute("INSERT INTO _migrations (name) VALUES ($1)", name)
            except asyncpg.PostgresError as e:
                migration_logger.error(f"Migration {name} failed: {e}")
                raise
        migration_logger.info(f"Applied {len(pending)} migration(s)")


# Migration SQL
MIGRATION_001_CREATE_USERS = """
-- Users: the host application's accounts, with the Penn State link columns
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT,

    -- Penn State link state (written only by the linking service)
    linked_status TEXT NOT NULL DEFAULT 'not_linked',  -- not_linked, linking, linked, error, expired
    linked_email TEXT,
    linked_at TIMESTAMPTZ,
    last_sync TIMESTAMPTZ,

    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_users_linked_status ON users(linked_status);

-- Trigger to auto-update updated_at
CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = NOW();
    RETURN NEW;
END;
$$ language 'plpgsql';

DROP TRIGGER IF EXISTS update_users_updated_at ON users;
CREATE TRIGGER update_users_updated_at
    BEFORE UPDATE ON users
    FOR EACH ROW
    EXECUTE FUNCTION update_updated_at_column();
"""

MIGRATION_002_CREATE_LINKED_CREDENTIALS = """
-- Encrypted Penn State credentials, at most one row per user
CREATE TABLE IF NOT EXISTS linked_credentials (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    encrypted_username TEXT NOT NULL,   -- base64(iv || tag || ciphertext)
    encrypted_password TEXT NOT NULL,
    key_fingerprint TEXT NOT NULL,      -- sha256(key)[:16], checked before decrypting
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_linked_credentials_updated ON linked_credentials(updated_at);

DROP TRIGGER IF EXISTS update_linked_credentials_updated_at ON linked_credentials;
CREATE TRIGGER update_linked_credentials_updated_at
    BEFORE UPDATE ON linked_credentials
    FOR EACH ROW
    EXECUTE FUNCTION update_updated_at_column();
"""

# Applied in order; names are recorded in _migrations
MIGRATIONS = [
    ("001_create_users", MIGRATION_001_CREATE_USERS),
    ("002_create_linked_credentials", MIGRATION_002_CREATE_LINKED_CREDENTIALS),
]
