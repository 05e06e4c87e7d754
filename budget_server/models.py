"""
Budget Server - Domain Models

PURPOSE: Typed results returned by the stores, the registry and the prediction engine
SCOPE: Records, categories, pages, suggestions and public user data
DEPENDENCIES: None
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "metadata": self.metadata}


@dataclass(frozen=True)
class Record:
    """One expense entry.

    ``amount`` is always a Decimal at the storage scale, ``occurred_at`` and
    ``created_at`` are naive datetimes.
    """
    id: int
    name: str
    amount: Decimal
    category_id: int
    occurred_at: datetime
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        # Amount travels as a string so clients never see a binary float
        return {
            "id": self.id,
            "name": self.name,
            "amount": str(self.amount),
            "category_id": self.category_id,
            "occurred_at": self.occurred_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class RecordPage:
    records: List[Record] = field(default_factory=list)
    has_more: bool = False
    total_count: int = 0
    next_cursor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": [record.to_dict() for record in self.records],
            "has_more": self.has_more,
            "total_count": self.total_count,
            "next_cursor": self.next_cursor,
        }


@dataclass
class CategoryPage:
    categories: List[Category] = field(default_factory=list)
    total_count: int = 0
    limit: int = 0
    offset: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categories": [category.to_dict() for category in self.categories],
            "total_count": self.total_count,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(frozen=True)
class Suggestion:
    """A ranked expense name with its frequency and the latest amount seen."""
    name: str
    count: int
    last_amount: Decimal
    last_occurred_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.count,
            "last_amount": str(self.last_amount),
            "last_occurred_at": self.last_occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class PublicUser:
    id: int
    username: str

    @property
    def tenant_id(self) -> str:
        return str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username}
