"""
Budget Server - Database Management

PURPOSE: Per-tenant database provisioning, schema setup, and connection management
SCOPE: Tenant database locator, schema initializer, and storage handles
DEPENDENCIES: aiosqlite, config.py, errors.py

Every tenant owns one SQLite file (``user_<tenant id>.db``) under the data
directory. The locator is the only component that maps a tenant identifier
to that file; stores receive a TenantHandle and open a connection per
operation.
"""

import asyncio
import logging
import re
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, Set, Union

import aiosqlite

from .config import ERR_DATABASE_ACCESS
from .errors import SchemaError, StorageUnavailable

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_TENANT_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")

_CREATE_CATEGORIES_TABLE = '''
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        normalized_name TEXT NOT NULL UNIQUE,
        metadata TEXT DEFAULT NULL
    )
'''

_CREATE_RECORDS_TABLE = '''
    CREATE TABLE IF NOT EXISTS records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        amount_minor INTEGER NOT NULL,
        name TEXT NOT NULL,
        category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE RESTRICT,
        occurred_at TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
'''

_CREATE_INDEXES = (
    'CREATE INDEX IF NOT EXISTS idx_records_occurred ON records (occurred_at, id)',
    'CREATE INDEX IF NOT EXISTS idx_records_category ON records (category_id, occurred_at)',
)

EXPECTED_COLUMNS: Dict[str, Set[str]] = {
    "categories": {"id", "name", "normalized_name", "metadata"},
    "records": {"id", "amount_minor", "name", "category_id", "occurred_at", "created_at"},
}


# ============================================================================
# SCHEMA INITIALIZER
# ============================================================================

async def ensure_schema(conn: aiosqlite.Connection) -> bool:
    """Apply the category and record tables if absent.

    Safe to call on an initialized database. Returns True when the schema was
    created by this call. Raises SchemaError when existing tables do not match
    the expected layout or the database was written by a newer schema.
    """
    await conn.execute("BEGIN IMMEDIATE")
    try:
        await _setup_schema_versioning(conn)
        current_version = await _get_current_schema_version(conn)
        if current_version > SCHEMA_VERSION:
            raise SchemaError(
                f"Database schema version {current_version} is newer than supported {SCHEMA_VERSION}"
            )

        present = await _check_existing_tables(conn)
        created = current_version < SCHEMA_VERSION
        if created:
            await conn.execute(_CREATE_CATEGORIES_TABLE)
            await conn.execute(_CREATE_RECORDS_TABLE)
            for statement in _CREATE_INDEXES:
                await conn.execute(statement)
            await conn.execute('INSERT INTO schema_version (version) VALUES (?)', (SCHEMA_VERSION,))
        elif present != set(EXPECTED_COLUMNS):
            missing = ", ".join(sorted(set(EXPECTED_COLUMNS) - present))
            raise SchemaError(f"Schema version {current_version} recorded but tables are missing: {missing}")

        await conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            await conn.execute("ROLLBACK")
        raise
    return created


async def _setup_schema_versioning(conn: aiosqlite.Connection) -> None:
    """Set up schema version tracking table."""
    await conn.execute('''
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')


async def _get_current_schema_version(conn: aiosqlite.Connection) -> int:
    """Get the current database schema version."""
    cursor = await conn.execute('SELECT MAX(version) FROM schema_version')
    result = await cursor.fetchone()
    return result[0] or 0


async def _check_existing_tables(conn: aiosqlite.Connection) -> Set[str]:
    """Return the expected tables already present, verifying their columns."""
    present = set()
    for table, expected in EXPECTED_COLUMNS.items():
        cursor = await conn.execute(f"PRAGMA table_info({table})")
        columns = {row[1] for row in await cursor.fetchall()}
        if not columns:
            continue
        if columns != expected:
            raise SchemaError(
                f"Table {table} has columns {sorted(columns)}, expected {sorted(expected)}"
            )
        present.add(table)
    return present


# ============================================================================
# STORAGE HANDLE
# ============================================================================

@dataclass(frozen=True)
class TenantHandle:
    """Opaque reference to one tenant's database.

    Holds no open connection; each operation borrows one through
    ``connect`` or ``transaction`` and releases it when done.
    """
    tenant_id: str
    path: Path
    busy_timeout: float = 5.0

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        # mode=rw: a stale handle must never recreate a dropped tenant file
        uri = self.path.resolve().as_uri() + "?mode=rw"
        try:
            conn = await aiosqlite.connect(
                uri, uri=True, timeout=self.busy_timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            logger.error("Cannot open database for tenant %s: %s", self.tenant_id, e)
            raise StorageUnavailable(ERR_DATABASE_ACCESS) from e

        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.OperationalError as e:
            logger.error("Database operation failed for tenant %s: %s", self.tenant_id, e)
            raise StorageUnavailable(ERR_DATABASE_ACCESS) from e
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """One atomic write: BEGIN IMMEDIATE, then COMMIT or ROLLBACK."""
        async with self.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")


# ============================================================================
# TENANT DATABASE LOCATOR
# ============================================================================

class TenantDatabaseLocator:
    """Maps tenant identifiers to their database, provisioning it on first use.

    Creation is serialized by a lock per tenant; unrelated tenants never wait
    on each other.
    """

    def __init__(self, data_path: Union[str, Path], busy_timeout: float = 5.0):
        self.data_path = Path(data_path)
        self.busy_timeout = busy_timeout
        self._handles: Dict[str, TenantHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def path_for(self, tenant_id: Union[str, int]) -> Path:
        key = str(tenant_id)
        if not _TENANT_ID_PATTERN.fullmatch(key):
            raise StorageUnavailable("Invalid tenant identifier")
        return self.data_path / f"user_{key}.db"

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant_id, asyncio.Lock())

    async def resolve(self, tenant_id: Union[str, int]) -> TenantHandle:
        """Return a ready handle for the tenant, creating its database if needed."""
        key = str(tenant_id)
        handle = self._handles.get(key)
        if handle is not None:
            return handle

        path = self.path_for(key)
        async with self._lock_for(key):
            handle = self._handles.get(key)
            if handle is None:
                handle = await self._provision(key, path)
                self._handles[key] = handle
        return handle

    async def _provision(self, tenant_id: str, path: Path) -> TenantHandle:
        try:
            await asyncio.to_thread(self.data_path.mkdir, parents=True, exist_ok=True)
            async with aiosqlite.connect(
                path, timeout=self.busy_timeout, isolation_level=None
            ) as conn:
                await conn.execute("PRAGMA journal_mode = WAL")
                created = await ensure_schema(conn)
        except SchemaError as e:
            logger.error("Tenant %s database has an incompatible schema: %s", tenant_id, e)
            raise
        except (sqlite3.Error, OSError) as e:
            logger.error("Cannot provision database for tenant %s: %s", tenant_id, e)
            raise StorageUnavailable(ERR_DATABASE_ACCESS) from e

        if created:
            logger.info("Provisioned database for tenant %s", tenant_id)
        return TenantHandle(tenant_id=tenant_id, path=path, busy_timeout=self.busy_timeout)

    async def drop(self, tenant_id: Union[str, int]) -> bool:
        """Delete a tenant's database files. Account deletion hook."""
        key = str(tenant_id)
        path = self.path_for(key)
        async with self._lock_for(key):
            self._handles.pop(key, None)
            self._locks.pop(key, None)
            removed = False
            for candidate in (path, Path(f"{path}-wal"), Path(f"{path}-shm")):
                try:
                    await asyncio.to_thread(candidate.unlink)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.error("Cannot remove %s for tenant %s: %s", candidate.name, key, e)
                    raise StorageUnavailable(ERR_DATABASE_ACCESS) from e
                removed = removed or candidate == path

        if removed:
            logger.info("Dropped database for tenant %s", key)
        return removed
