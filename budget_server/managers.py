"""
Budget Server - Data Managers

PURPOSE: Data access layer for expense records and categories
SCOPE: CRUD operations scoped to a single tenant database
DEPENDENCIES: aiosqlite, database.py, validators.py

Managers are built around a TenantHandle obtained from the locator and are
meant to live for one request. They never hold a connection between calls;
every mutation runs in its own transaction.
"""

import base64
import binascii
import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from .config import DEFAULT_CATEGORIES_LIMIT, DEFAULT_RECORDS_LIMIT, MAX_SEARCH_TERM_LENGTH
from .database import TenantHandle
from .errors import CategoryInUse, DuplicateName, NotFound, ValidationError
from .models import Category, CategoryPage, Record, RecordPage
from .validators import (
    format_timestamp,
    from_minor_units,
    normalize_name,
    parse_occurred_at,
    parse_timestamp,
    require_valid,
    to_minor_units,
    utc_now,
    validate_category_data,
    validate_limit,
    validate_offset,
    validate_record_data,
    validate_string_length,
)

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = "id, name, amount_minor, category_id, occurred_at, created_at"
_ORDERS = ("asc", "desc")


def record_from_row(row: aiosqlite.Row) -> Record:
    return Record(
        id=row["id"],
        name=row["name"],
        amount=from_minor_units(row["amount_minor"]),
        category_id=row["category_id"],
        occurred_at=parse_timestamp(row["occurred_at"]),
        created_at=parse_timestamp(row["created_at"]),
    )


def category_from_row(row: aiosqlite.Row) -> Category:
    metadata = json.loads(row["metadata"]) if row["metadata"] is not None else None
    return Category(id=row["id"], name=row["name"], metadata=metadata)


async def _category_exists(conn: aiosqlite.Connection, category_id: int) -> bool:
    cursor = await conn.execute("SELECT 1 FROM categories WHERE id = ?", (category_id,))
    return await cursor.fetchone() is not None


def encode_cursor(order: str, record: Record) -> str:
    payload = json.dumps([order, format_timestamp(record.occurred_at), record.id])
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str, order: str) -> Tuple[str, int]:
    """Return the (occurred_at text, id) position encoded in a page cursor."""
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        cursor_order, occurred_at, record_id = payload
        parse_timestamp(occurred_at)
    except (ValueError, TypeError, UnicodeError, binascii.Error):
        raise ValidationError(["Invalid cursor"]) from None
    if cursor_order != order or not isinstance(record_id, int) or isinstance(record_id, bool):
        raise ValidationError(["Cursor does not match the requested order"])
    return occurred_at, record_id


class RecordManager:
    """Handles expense record CRUD operations for one tenant."""

    def __init__(self, handle: TenantHandle):
        self.handle = handle

    async def create_record(self, record_data: Dict[str, Any]) -> Record:
        """Create a new record; id and created_at are assigned here."""
        values = require_valid(validate_record_data(record_data))
        occurred_at = values.get("occurred_at") or utc_now()
        created_at = utc_now()

        async with self.handle.transaction() as conn:
            if not await _category_exists(conn, values["category_id"]):
                raise ValidationError(["Category does not exist"])
            cursor = await conn.execute('''
                INSERT INTO records (amount_minor, name, category_id, occurred_at, created_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (
                to_minor_units(values["amount"]), values["name"], values["category_id"],
                format_timestamp(occurred_at), format_timestamp(created_at)
            ))
            record_id = cursor.lastrowid

        return Record(
            id=record_id,
            name=values["name"],
            amount=values["amount"],
            category_id=values["category_id"],
            occurred_at=occurred_at,
            created_at=created_at,
        )

    async def get_record(self, record_id: int) -> Record:
        async with self.handle.connect() as conn:
            cursor = await conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFound("Record", record_id)
        return record_from_row(row)

    async def list_records(
        self,
        start: Any = None,
        end: Any = None,
        order: str = "desc",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> RecordPage:
        """List records in an inclusive occurred_at range.

        Records sort by occurred_at in the requested direction, ties broken by
        id ascending. Paging is either offset based or keyset based through
        the ``next_cursor`` of a previous page; keyset pages stay stable when
        other records are inserted between fetches.
        """
        order = (order or "desc").lower()
        if order not in _ORDERS:
            raise ValidationError(["Order must be 'asc' or 'desc'"])
        limit = validate_limit(limit, DEFAULT_RECORDS_LIMIT)
        if cursor is not None and offset:
            raise ValidationError(["Use either offset or cursor, not both"])
        offset = validate_offset(offset)

        conditions: List[str] = []
        params: List[Any] = []
        try:
            if start is not None:
                conditions.append("occurred_at >= ?")
                params.append(format_timestamp(parse_occurred_at(start)))
            if end is not None:
                conditions.append("occurred_at <= ?")
                params.append(format_timestamp(parse_occurred_at(end, end_of_day=True)))
        except ValueError as e:
            raise ValidationError([str(e)]) from None

        filter_sql = " WHERE " + " AND ".join(conditions) if conditions else ""
        page_conditions = list(conditions)
        page_params = list(params)
        if cursor is not None:
            occurred_at, last_id = decode_cursor(cursor, order)
            comparison = ">" if order == "asc" else "<"
            page_conditions.append(
                f"(occurred_at {comparison} ? OR (occurred_at = ? AND id > ?))"
            )
            page_params.extend([occurred_at, occurred_at, last_id])
        page_sql = " WHERE " + " AND ".join(page_conditions) if page_conditions else ""

        async with self.handle.connect() as conn:
            # One read transaction so the count and the page see the same snapshot
            await conn.execute("BEGIN")
            try:
                count_cursor = await conn.execute(
                    f"SELECT COUNT(*) FROM records{filter_sql}", params
                )
                total_count = (await count_cursor.fetchone())[0]
                rows_cursor = await conn.execute(
                    f"SELECT {_RECORD_COLUMNS} FROM records{page_sql} "
                    f"ORDER BY occurred_at {order.upper()}, id ASC LIMIT ? OFFSET ?",
                    page_params + [limit + 1, offset],
                )
                rows = await rows_cursor.fetchall()
            finally:
                await conn.execute("COMMIT")

        records = [record_from_row(row) for row in rows[:limit]]
        has_more = len(rows) > limit
        next_cursor = encode_cursor(order, records[-1]) if has_more else None
        return RecordPage(
            records=records, has_more=has_more, total_count=total_count, next_cursor=next_cursor
        )

    async def update_record(self, record_id: int, record_data: Dict[str, Any]) -> Record:
        """Apply a partial update atomically; nothing changes if any field is invalid."""
        changes = require_valid(validate_record_data(record_data, partial=True))

        async with self.handle.transaction() as conn:
            cursor = await conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFound("Record", record_id)
            existing = record_from_row(row)

            if "category_id" in changes and not await _category_exists(conn, changes["category_id"]):
                raise ValidationError(["Category does not exist"])

            updated = Record(
                id=existing.id,
                name=changes.get("name", existing.name),
                amount=changes.get("amount", existing.amount),
                category_id=changes.get("category_id", existing.category_id),
                occurred_at=changes.get("occurred_at", existing.occurred_at),
                created_at=existing.created_at,
            )
            await conn.execute('''
                UPDATE records SET name = ?, amount_minor = ?, category_id = ?, occurred_at = ?
                WHERE id = ?
            ''', (
                updated.name, to_minor_units(updated.amount), updated.category_id,
                format_timestamp(updated.occurred_at), record_id
            ))

        return updated

    async def delete_record(self, record_id: int) -> None:
        async with self.handle.transaction() as conn:
            cursor = await conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
            if cursor.rowcount == 0:
                raise NotFound("Record", record_id)
        logger.debug("Deleted record %s for tenant %s", record_id, self.handle.tenant_id)

    async def records_for_category(self, category_id: int) -> List[Record]:
        """Snapshot of every record in a category, used by the prediction engine."""
        async with self.handle.connect() as conn:
            cursor = await conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE category_id = ?", (category_id,)
            )
            rows = await cursor.fetchall()
        return [record_from_row(row) for row in rows]


class CategoryManager:
    """Handles expense category operations for one tenant.

    Names are unique per tenant after trimming and case folding. A category
    referenced by any record cannot be deleted.
    """

    def __init__(self, handle: TenantHandle):
        self.handle = handle

    async def create_category(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> Category:
        values = require_valid(validate_category_data({"name": name, "metadata": metadata}))
        normalized = normalize_name(values["name"])

        async with self.handle.transaction() as conn:
            if await self._name_taken(conn, normalized):
                raise DuplicateName("Category name already exists (case-insensitive)")
            try:
                cursor = await conn.execute(
                    'INSERT INTO categories (name, normalized_name, metadata) VALUES (?, ?, ?)',
                    (values["name"], normalized, self._dump_metadata(values["metadata"]))
                )
            except sqlite3.IntegrityError:
                raise DuplicateName("Category name already exists (case-insensitive)") from None
            category_id = cursor.lastrowid

        return Category(id=category_id, name=values["name"], metadata=values["metadata"])

    async def get_category(self, category_id: int) -> Category:
        async with self.handle.connect() as conn:
            cursor = await conn.execute(
                'SELECT id, name, metadata FROM categories WHERE id = ?', (category_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFound("Category", category_id)
        return category_from_row(row)

    async def list_categories(
        self,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> CategoryPage:
        """Get categories ordered by name, optionally filtered by a substring."""
        limit = validate_limit(limit, DEFAULT_CATEGORIES_LIMIT)
        offset = validate_offset(offset)

        where, params = "", []
        search = search.strip() if search else None
        if search:
            errors = validate_string_length(search, "Search term", MAX_SEARCH_TERM_LENGTH)
            if errors:
                raise ValidationError(errors)
            escaped = normalize_name(search).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            where = " WHERE normalized_name LIKE ? ESCAPE '\\'"
            params.append(f"%{escaped}%")

        async with self.handle.connect() as conn:
            await conn.execute("BEGIN")
            try:
                cursor = await conn.execute(f"SELECT COUNT(*) FROM categories{where}", params)
                total_count = (await cursor.fetchone())[0]
                cursor = await conn.execute(
                    f"SELECT id, name, metadata FROM categories{where} "
                    "ORDER BY normalized_name ASC, id ASC LIMIT ? OFFSET ?",
                    params + [limit, offset],
                )
                rows = await cursor.fetchall()
            finally:
                await conn.execute("COMMIT")

        return CategoryPage(
            categories=[category_from_row(row) for row in rows],
            total_count=total_count,
            limit=limit,
            offset=offset,
        )

    async def update_category(self, category_id: int, category_data: Dict[str, Any]) -> Category:
        """Rename a category and/or replace its metadata."""
        changes = require_valid(validate_category_data(category_data, partial=True))

        async with self.handle.transaction() as conn:
            cursor = await conn.execute(
                'SELECT id, name, metadata FROM categories WHERE id = ?', (category_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFound("Category", category_id)
            existing = category_from_row(row)

            name = changes.get("name", existing.name)
            metadata = changes["metadata"] if "metadata" in changes else existing.metadata
            normalized = normalize_name(name)
            if await self._name_taken(conn, normalized, exclude_id=category_id):
                raise DuplicateName("Category name already exists (case-insensitive)")

            await conn.execute(
                'UPDATE categories SET name = ?, normalized_name = ?, metadata = ? WHERE id = ?',
                (name, normalized, self._dump_metadata(metadata), category_id)
            )

        return Category(id=category_id, name=name, metadata=metadata)

    async def rename_category(self, category_id: int, new_name: str) -> Category:
        return await self.update_category(category_id, {"name": new_name})

    async def delete_category(self, category_id: int) -> None:
        """Delete a category, rejecting the call while records reference it."""
        async with self.handle.transaction() as conn:
            cursor = await conn.execute('SELECT 1 FROM categories WHERE id = ?', (category_id,))
            if await cursor.fetchone() is None:
                raise NotFound("Category", category_id)

            cursor = await conn.execute(
                'SELECT COUNT(*) FROM records WHERE category_id = ?', (category_id,)
            )
            in_use = (await cursor.fetchone())[0]
            if in_use:
                raise CategoryInUse(
                    f"Cannot delete category: it has {in_use} associated records"
                )

            await conn.execute('DELETE FROM categories WHERE id = ?', (category_id,))
        logger.debug("Deleted category %s for tenant %s", category_id, self.handle.tenant_id)

    async def _name_taken(
        self, conn: aiosqlite.Connection, normalized: str, exclude_id: Optional[int] = None
    ) -> bool:
        cursor = await conn.execute(
            'SELECT 1 FROM categories WHERE normalized_name = ? AND id != ?',
            (normalized, -1 if exclude_id is None else exclude_id)
        )
        return await cursor.fetchone() is not None

    @staticmethod
    def _dump_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
        return json.dumps(metadata, sort_keys=True) if metadata is not None else None
