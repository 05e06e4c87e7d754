"""
Budget Server - Error Taxonomy

PURPOSE: Exception types raised by the storage core and the account registry
SCOPE: Storage, validation, lookup and conflict failures
DEPENDENCIES: None (foundational module)
"""

from typing import List, Optional


class BudgetServerError(Exception):
    """Base class for every error raised by the budget server."""


class ConfigError(BudgetServerError):
    """Process configuration is missing or invalid."""


class StorageUnavailable(BudgetServerError):
    """Tenant storage cannot be created or opened. Retryable later."""


class SchemaError(BudgetServerError):
    """Tenant database structure conflicts with the expected layout.

    Not retryable: the tenant needs operator intervention.
    """


class ValidationError(BudgetServerError):
    """Caller-fixable input problem, carrying one message per failed rule."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotFound(BudgetServerError):
    """Requested record or category id is absent in this tenant."""

    def __init__(self, kind: str, identifier: Optional[object] = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found")


class DuplicateName(BudgetServerError):
    """A category with the same normalized name already exists."""


class CategoryInUse(BudgetServerError):
    """Category deletion rejected because records still reference it."""


class PredictionUnavailable(BudgetServerError):
    """Suggestion lookup failed. Never surfaced past the prediction engine."""


class AuthenticationError(BudgetServerError):
    """Missing session or invalid credentials."""


class UsernameTaken(BudgetServerError):
    """Registration attempted with a username that already exists."""
