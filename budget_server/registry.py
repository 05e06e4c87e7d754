"""
Budget Server - User Registry

PURPOSE: Shared account database mapping login credentials to tenant identifiers
SCOPE: Registration, authentication, lookup and deletion of users
DEPENDENCIES: aiosqlite, bcrypt, validators.py
"""

import asyncio
import logging
import secrets
import sqlite3
from pathlib import Path
from typing import Dict, Optional, Union

import aiosqlite
import bcrypt

from .config import ERR_DATABASE_ACCESS, MAX_PASSWORD_BYTES
from .errors import AuthenticationError, NotFound, StorageUnavailable, UsernameTaken, ValidationError
from .models import PublicUser
from .validators import validate_credentials

logger = logging.getLogger(__name__)

USERS_DB_FILE = "users.db"


class UserRegistry:
    """Handles user accounts stored in ``users.db`` next to the tenant files."""

    def __init__(self, data_path: Union[str, Path], busy_timeout: float = 5.0):
        self.db_file = Path(data_path) / USERS_DB_FILE
        self.busy_timeout = busy_timeout

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_file, timeout=self.busy_timeout)

    async def initialize(self) -> None:
        """Create the users table if it does not exist yet."""
        try:
            await asyncio.to_thread(self.db_file.parent.mkdir, parents=True, exist_ok=True)
            async with self._connect() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT UNIQUE NOT NULL,
                        password_hash TEXT NOT NULL
                    )
                ''')
                await conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.error("Cannot initialize user registry at %s: %s", self.db_file, e)
            raise StorageUnavailable(ERR_DATABASE_ACCESS) from e

    async def register(self, username: str, password: str) -> PublicUser:
        is_valid, errors = validate_credentials(username, password)
        if not is_valid:
            raise ValidationError(errors)
        username = username.strip()

        password_hash = await asyncio.to_thread(
            bcrypt.hashpw, password.encode("utf-8"), bcrypt.gensalt()
        )
        async with self._connect() as conn:
            try:
                cursor = await conn.execute(
                    'INSERT INTO users (name, password_hash) VALUES (?, ?)',
                    (username, password_hash.decode("utf-8"))
                )
                await conn.commit()
            except sqlite3.IntegrityError:
                raise UsernameTaken("Username already exists") from None
            user_id = cursor.lastrowid

        logger.info("Registered user %s", user_id)
        return PublicUser(id=user_id, username=username)

    async def authenticate(self, username: str, password: str) -> PublicUser:
        """Return the user for valid credentials, else raise AuthenticationError."""
        async with self._connect() as conn:
            cursor = await conn.execute(
                'SELECT id, name, password_hash FROM users WHERE name = ?',
                ((username or "").strip(),)
            )
            row = await cursor.fetchone()

        password_bytes = (password or "").encode("utf-8")
        if row is None or len(password_bytes) > MAX_PASSWORD_BYTES:
            raise AuthenticationError("Invalid credentials")
        matches = await asyncio.to_thread(
            bcrypt.checkpw, password_bytes, row[2].encode("utf-8")
        )
        if not matches:
            raise AuthenticationError("Invalid credentials")
        return PublicUser(id=row[0], username=row[1])

    async def get_user(self, user_id: int) -> Optional[PublicUser]:
        async with self._connect() as conn:
            cursor = await conn.execute('SELECT id, name FROM users WHERE id = ?', (user_id,))
            row = await cursor.fetchone()
        return PublicUser(id=row[0], username=row[1]) if row else None

    async def delete_user(self, user_id: int) -> None:
        async with self._connect() as conn:
            cursor = await conn.execute('DELETE FROM users WHERE id = ?', (user_id,))
            await conn.commit()
            if cursor.rowcount == 0:
                raise NotFound("User", user_id)
        logger.info("Deleted user %s", user_id)


class SessionStore:
    """Server-side login sessions keyed by the token held in the signed cookie.

    Clearing a token here invalidates every copy of the cookie carrying it.
    Sessions live in memory and do not survive a restart.
    """

    def __init__(self):
        self._sessions: Dict[str, int] = {}

    def issue(self, user_id: int) -> str:
        token = secrets.token_urlsafe(32)
        self._sessions[token] = user_id
        return token

    def lookup(self, token: Optional[str]) -> Optional[int]:
        if not token:
            return None
        return self._sessions.get(token)

    def revoke(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token, None)

    def revoke_user(self, user_id: int) -> None:
        for token in [t for t, owner in self._sessions.items() if owner == user_id]:
            del self._sessions[token]
