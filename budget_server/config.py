"""
Budget Server - Configuration and Constants

PURPOSE: Central configuration management for the application
SCOPE: Application settings, limits, and environment parsing
DEPENDENCIES: errors.py
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigError

# Server defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_DATA_PATH = "data"

# Session configuration
SESSION_COOKIE_NAME = "budget_session"
SESSION_EXPIRY_DAYS = 30
MIN_SESSION_SECRET_LENGTH = 64

# List limits and defaults
DEFAULT_CATEGORIES_LIMIT = 100
DEFAULT_RECORDS_LIMIT = 500
MAX_LIMIT = 1000
MAX_OFFSET = 1_000_000

# Suggestions
DEFAULT_SUGGESTION_LIMIT = 5
MAX_SUGGESTION_LIMIT = 20

# Validation limits
MAX_CATEGORY_NAME_LENGTH = 100
MAX_RECORD_NAME_LENGTH = 255
MAX_SEARCH_TERM_LENGTH = 100
MIN_USERNAME_LENGTH = 4
MAX_USERNAME_LENGTH = 50
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_BYTES = 72

# Amounts are persisted as integer minor units at this scale
AMOUNT_SCALE = 2

# Error messages returned for server-side failures
ERR_DATABASE_ACCESS = "Database access error"
ERR_DATABASE_OPERATION = "Database operation failed"
ERR_UNAUTHORIZED = "Not logged in"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class AppConfig:
    """Application configuration passed explicitly to the core and the HTTP layer."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    data_path: str = DEFAULT_DATA_PATH
    session_secret: str = ""
    production: bool = False
    session_expiry_days: int = SESSION_EXPIRY_DAYS
    suggestion_limit: int = DEFAULT_SUGGESTION_LIMIT
    busy_timeout: float = 5.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """Build a configuration from process environment variables.

        Recognised variables: SERVER_HOST, SERVER_PORT, DATABASE_PATH,
        SESSION_SECRET and PRODUCTION.
        """
        env = os.environ if environ is None else environ

        raw_port = env.get("SERVER_PORT", str(DEFAULT_PORT))
        try:
            port = int(raw_port)
        except ValueError:
            raise ConfigError(f"Invalid port number: {raw_port}") from None
        if not 0 < port < 65536:
            raise ConfigError(f"Invalid port number: {raw_port}")

        session_secret = env.get("SESSION_SECRET")
        if not session_secret:
            raise ConfigError("SESSION_SECRET environment variable is required")
        if len(session_secret.encode("utf-8")) < MIN_SESSION_SECRET_LENGTH:
            raise ConfigError(
                f"Invalid session secret: must be at least {MIN_SESSION_SECRET_LENGTH} characters long"
            )

        return cls(
            host=env.get("SERVER_HOST", DEFAULT_HOST),
            port=port,
            data_path=env.get("DATABASE_PATH", DEFAULT_DATA_PATH),
            session_secret=session_secret,
            production=env.get("PRODUCTION", "").strip().lower() in _TRUE_VALUES,
        )

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"


def configure_logging(level: int = logging.INFO) -> None:
    """Set up process-wide logging. Called once by the entry point."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
