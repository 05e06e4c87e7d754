"""
Budget Server - Request Payloads

PURPOSE: Pydantic models for JSON request bodies
SCOPE: Auth, record and category payloads
DEPENDENCIES: pydantic
"""

from decimal import Decimal
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, StrictFloat, StrictInt, StrictStr

# ISO text or a unix timestamp, handed to validators.parse_occurred_at unparsed
TimestampInput = Union[StrictInt, StrictFloat, StrictStr]


class CredentialsPayload(BaseModel):
    username: str
    password: str


class CreateRecordPayload(BaseModel):
    name: str
    amount: Decimal
    category_id: int
    occurred_at: Optional[TimestampInput] = None


class UpdateRecordPayload(BaseModel):
    """Partial update: only fields present in the body are applied."""
    name: Optional[str] = None
    amount: Optional[Decimal] = None
    category_id: Optional[int] = None
    occurred_at: Optional[TimestampInput] = None


class CreateCategoryPayload(BaseModel):
    name: str
    metadata: Optional[Dict[str, Any]] = None


class UpdateCategoryPayload(BaseModel):
    name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
