"""
Budget Server - Data Validation

PURPOSE: Data validation and business rule enforcement
SCOPE: Amount, timestamp, name, paging and credential checks
DEPENDENCIES: config.py, errors.py
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from .config import (
    AMOUNT_SCALE,
    MAX_CATEGORY_NAME_LENGTH,
    MAX_LIMIT,
    MAX_OFFSET,
    MAX_PASSWORD_BYTES,
    MAX_RECORD_NAME_LENGTH,
    MAX_USERNAME_LENGTH,
    MIN_PASSWORD_LENGTH,
    MIN_USERNAME_LENGTH,
)
from .errors import ValidationError

_QUANTUM = Decimal(1).scaleb(-AMOUNT_SCALE)
_MAX_MINOR_UNITS = 2 ** 63 - 1

RECORD_FIELDS = ("name", "amount", "category_id", "occurred_at")
CATEGORY_FIELDS = ("name", "metadata")


# ============================================================================
# AMOUNTS
# ============================================================================

def parse_amount(value: Any) -> Decimal:
    """Parse a currency amount without ever rounding it.

    Raises ValueError for non-numeric input, more fractional digits than the
    storage scale, zero, or values outside the storable range.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("Amount is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise ValueError("Amount must be a finite number")
    try:
        quantized = amount.quantize(_QUANTUM)
    except InvalidOperation:
        raise ValueError("Amount is out of range") from None
    if quantized != amount:
        raise ValueError(f"Amount cannot have more than {AMOUNT_SCALE} decimal places")
    if quantized == 0:
        raise ValueError("Record amount cannot be zero")
    if abs(to_minor_units(quantized)) > _MAX_MINOR_UNITS:
        raise ValueError("Amount is out of range")
    return quantized


def to_minor_units(amount: Decimal) -> int:
    return int(amount.scaleb(AMOUNT_SCALE))


def from_minor_units(units: int) -> Decimal:
    return Decimal(units).scaleb(-AMOUNT_SCALE)


# ============================================================================
# TIMESTAMPS
# ============================================================================

def parse_occurred_at(value: Any, end_of_day: bool = False) -> datetime:
    """Normalize a date, datetime, ISO string or unix timestamp to a naive datetime.

    A bare date widens to the start of that day, or to its last microsecond
    when ``end_of_day`` is set (used for inclusive upper bounds).
    Timezone-aware input is rejected.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("Timestamp is required")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            raise ValueError(f"Invalid timestamp: {value!r}") from None
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                value = date.fromisoformat(text)
            else:
                value = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid timestamp: {value!r}") from None
    if isinstance(value, datetime):
        if value.tzinfo is not None and value.utcoffset() is not None:
            raise ValueError("Timestamp must not carry a timezone")
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)
    raise ValueError(f"Invalid timestamp: {value!r}")


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO text, so string order equals chronological order."""
    return value.isoformat(timespec="microseconds")


def parse_timestamp(text: str) -> datetime:
    return datetime.fromisoformat(text)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# NAMES AND FIELDS
# ============================================================================

def normalize_name(name: str) -> str:
    """Case-insensitive, trimmed form used for uniqueness and grouping."""
    return name.strip().casefold()


def validate_string_length(value: Any, field_name: str, max_length: int) -> List[str]:
    if not isinstance(value, str) or not value.strip():
        return [f"{field_name} cannot be empty"]
    if len(value.strip()) > max_length:
        return [f"{field_name} must be {max_length} characters or less"]
    return []


def validate_category_name(name: Any) -> Tuple[bool, List[str]]:
    """Validate category name."""
    errors = validate_string_length(name, "Category name", MAX_CATEGORY_NAME_LENGTH)
    return len(errors) == 0, errors


def _parse_identifier(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer")
    try:
        identifier = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be an integer") from None
    if isinstance(value, float) and value != identifier:
        raise ValueError(f"{field_name} must be an integer")
    return identifier


def validate_record_data(data: Dict[str, Any], partial: bool = False) -> Tuple[Dict[str, Any], List[str]]:
    """Validate record fields and return the cleaned values with error messages.

    With ``partial`` only the supplied fields are checked, and at least one
    must be present. Otherwise name, amount and category_id are required and
    occurred_at is optional.
    """
    errors: List[str] = []
    cleaned: Dict[str, Any] = {}

    unknown = sorted(set(data) - set(RECORD_FIELDS))
    if unknown:
        errors.append(f"Unknown record fields: {', '.join(unknown)}")

    if partial:
        if not any(key in data for key in RECORD_FIELDS):
            errors.append("At least one field must be provided for update")
    else:
        for key, label in (("name", "Record name"), ("amount", "Amount"), ("category_id", "Category ID")):
            if data.get(key) is None:
                errors.append(f"{label} is required")

    if data.get("name") is not None:
        name_errors = validate_string_length(data["name"], "Record name", MAX_RECORD_NAME_LENGTH)
        if name_errors:
            errors.extend(name_errors)
        else:
            cleaned["name"] = data["name"].strip()
    elif partial and "name" in data:
        errors.append("Record name cannot be empty")

    if data.get("amount") is not None:
        try:
            cleaned["amount"] = parse_amount(data["amount"])
        except ValueError as e:
            errors.append(str(e))
    elif partial and "amount" in data:
        errors.append("Amount is required")

    if data.get("category_id") is not None:
        try:
            cleaned["category_id"] = _parse_identifier(data["category_id"], "Category ID")
        except ValueError as e:
            errors.append(str(e))
    elif partial and "category_id" in data:
        errors.append("Category ID is required")

    if data.get("occurred_at") is not None:
        try:
            cleaned["occurred_at"] = parse_occurred_at(data["occurred_at"])
        except ValueError as e:
            errors.append(str(e))
    elif partial and "occurred_at" in data:
        errors.append("Timestamp is required")

    return cleaned, errors


def validate_category_data(data: Dict[str, Any], partial: bool = False) -> Tuple[Dict[str, Any], List[str]]:
    """Validate category fields; metadata must be a JSON object or null."""
    errors: List[str] = []
    cleaned: Dict[str, Any] = {}

    unknown = sorted(set(data) - set(CATEGORY_FIELDS))
    if unknown:
        errors.append(f"Unknown category fields: {', '.join(unknown)}")
    if partial and not any(key in data for key in CATEGORY_FIELDS):
        errors.append("At least one field must be provided for update")

    if "name" in data or not partial:
        is_valid, name_errors = validate_category_name(data.get("name"))
        if is_valid:
            cleaned["name"] = data["name"].strip()
        errors.extend(name_errors)

    if "metadata" in data:
        metadata = data["metadata"]
        if metadata is not None and not isinstance(metadata, dict):
            errors.append("Category metadata must be an object")
        else:
            cleaned["metadata"] = metadata

    return cleaned, errors


def require_valid(result: Tuple[Dict[str, Any], List[str]]) -> Dict[str, Any]:
    """Unpack a validation result, raising ValidationError when it failed."""
    cleaned, errors = result
    if errors:
        raise ValidationError(errors)
    return cleaned


# ============================================================================
# PAGING
# ============================================================================

def validate_limit(limit: Optional[int], default: int) -> int:
    if limit is None:
        return default
    if limit <= 0:
        raise ValidationError(["Limit must be greater than 0"])
    if limit > MAX_LIMIT:
        raise ValidationError([f"Limit cannot exceed {MAX_LIMIT}"])
    return limit


def validate_offset(offset: Optional[int]) -> int:
    if offset is None:
        return 0
    if offset < 0:
        raise ValidationError(["Offset cannot be negative"])
    if offset > MAX_OFFSET:
        raise ValidationError([f"Offset cannot exceed {MAX_OFFSET}"])
    return offset


# ============================================================================
# CREDENTIALS
# ============================================================================

def validate_credentials(username: Any, password: Any) -> Tuple[bool, List[str]]:
    """Validate a registration username and password."""
    errors = []

    if not isinstance(username, str) or not username.strip():
        errors.append("Username is required")
    elif not MIN_USERNAME_LENGTH <= len(username.strip()) <= MAX_USERNAME_LENGTH:
        errors.append(
            f"Username must be between {MIN_USERNAME_LENGTH} and {MAX_USERNAME_LENGTH} characters"
        )

    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    elif len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    return len(errors) == 0, errors
