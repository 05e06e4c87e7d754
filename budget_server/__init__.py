"""
Budget Server Package

PURPOSE: Package initialization for the multi-tenant budget server
SCOPE: Module imports and package metadata
"""

__version__ = "0.1.0"
__description__ = "Personal expense tracking server with one database per user"

from .config import AppConfig
from .database import TenantDatabaseLocator, TenantHandle, ensure_schema
from .managers import CategoryManager, RecordManager
from .prediction import rank_suggestions, suggest
from .registry import UserRegistry

__all__ = [
    "AppConfig",
    "TenantDatabaseLocator",
    "TenantHandle",
    "ensure_schema",
    "RecordManager",
    "CategoryManager",
    "rank_suggestions",
    "suggest",
    "UserRegistry",
]
