"""SQLite database client wrapper with CRUD, counting and filter parsing.

Filter syntax (shared with the in-memory test double):
    field = "value"          equality (also !=, <, >, <=, >=)
    field ~ "text"           Unicode case-insensitive substring match
    a && b                   conjunction
    (a || b)                 parenthesised disjunction
"""

import asyncio
import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.config import settings
from src.core.errors import DatabaseError, RecordNotFoundError


logger = logging.getLogger(__name__)

__all__ = [
    "Comparison",
    "DatabaseError",
    "RecordNotFoundError",
    "close_connection",
    "count_records",
    "create_record",
    "delete_record",
    "get_connection",
    "get_first_record",
    "get_record",
    "init_db",
    "list_records",
    "parse_filter",
    "parse_filter_conditions",
    "parse_sort",
    "sanitize_param",
    "update_record",
]

_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_COMPARISON = re.compile(
    r"""^(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(?:"((?:[^"\\]|\\.)*)"|'([^']*)')$""",
    re.DOTALL,
)
_SORT_TERM = re.compile(r"^([+-]?)([A-Za-z_][A-Za-z0-9_]*)(?:\s+(ASC|DESC))?$", re.IGNORECASE)

FilterValue = str | int | float | bool | None

# Columns declared INTEGER in the schema; all others hold text
_INTEGER_FIELDS = frozenset({"id"})


@dataclass(frozen=True)
class Comparison:
    """A single `field op value` term of a filter expression."""

    field: str
    op: str
    value: str


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not _IDENTIFIER.match(collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding inside a double-quoted filter literal."""
    return json.dumps(str(value), ensure_ascii=False)[1:-1]


def _convert_record_ids(record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ID and foreign key fields to strings for Pydantic compatibility."""
    converted = record.copy()
    for key, value in converted.items():
        if isinstance(value, int) and not isinstance(value, bool) and (key == "id" or key.endswith("_id")):
            converted[key] = str(value)
    return converted


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(comparison: Comparison) -> FilterValue:
    """Bind value for a comparison.

    Only INTEGER columns get numeric values; every other column is compared as
    text, so "0123" never equals "123".
    """
    value = comparison.value
    if comparison.field in _INTEGER_FIELDS and value.isascii() and value.isdigit():
        return int(value)
    return value


def _casefold_contains(haystack: object, needle: object) -> bool:
    """SQL function behind `~`: Unicode case-insensitive substring test."""
    if haystack is None or needle is None:
        return False
    return str(needle).casefold() in str(haystack).casefold()


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "CASEFOLD_CONTAINS",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _split_top_level(expression: str, separator: str) -> list[str]:
    """Split on a separator that appears outside quotes and parentheses."""
    parts = []
    current: list[str] = []
    paren_depth = 0
    quote: str | None = None
    i = 0

    while i < len(expression):
        char = expression[i]
        if quote:
            current.append(char)
            if char == "\\" and quote == '"' and i + 1 < len(expression):
                current.append(expression[i + 1])
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in ('"', "'"):
            quote = char
            current.append(char)
        elif char == "(":
            paren_depth += 1
            current.append(char)
        elif char == ")":
            paren_depth -= 1
            current.append(char)
        elif paren_depth == 0 and expression.startswith(separator, i):
            parts.append("".join(current).strip())
            current = []
            i += len(separator)
            continue
        else:
            current.append(char)
        i += 1

    if quote or paren_depth != 0:
        msg = f"Invalid filter syntax: {expression}"
        raise ValueError(msg)

    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def _parse_single_comparison(comparison: str) -> Comparison:
    """Parse a single comparison expression."""
    match = _COMPARISON.match(comparison.strip())
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field, op, double_quoted, single_quoted = match.groups()
    _get_sql_operator(op)
    value = json.loads(f'"{double_quoted}"', strict=False) if double_quoted is not None else single_quoted
    return Comparison(field=field, op=op, value=value)


def _parse_or_group(or_group: str) -> list[Comparison]:
    """Parse a parenthesized OR group into its comparisons."""
    inner = or_group[1:-1]
    return [_parse_single_comparison(part) for part in _split_top_level(inner, "||")]


def parse_filter_conditions(filter_query: str) -> list[list[Comparison]]:
    """Parse filter syntax into AND-ed groups of OR-ed comparisons."""
    if not filter_query or not filter_query.strip():
        return []

    groups = []
    for part in _split_top_level(filter_query, "&&"):
        if part.startswith("(") and part.endswith(")"):
            groups.append(_parse_or_group(part))
        else:
            groups.append([_parse_single_comparison(part)])
    return groups


def _comparison_to_sql(comparison: Comparison) -> tuple[str, FilterValue]:
    sql_op = _get_sql_operator(comparison.op)
    if sql_op == "CASEFOLD_CONTAINS":
        return f"casefold_contains({comparison.field}, ?)", comparison.value
    return f"{comparison.field} {sql_op} ?", _parse_value(comparison)


def parse_filter(filter_query: str) -> tuple[str, list[FilterValue]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list."""
    conditions = []
    params: list[FilterValue] = []

    for group in parse_filter_conditions(filter_query):
        rendered = [_comparison_to_sql(comparison) for comparison in group]
        params.extend(value for _, value in rendered)
        if len(rendered) == 1:
            conditions.append(rendered[0][0])
        else:
            conditions.append(f"({' OR '.join(sql for sql, _ in rendered)})")

    return " AND ".join(conditions), params


def parse_sort(sort: str) -> list[tuple[str, bool]]:
    """Parse a sort expression into (field, descending) pairs.

    Accepts `-field`, `+field`, `field` and `field DESC` terms separated by commas.
    """
    terms = []
    for raw_term in sort.split(","):
        term = raw_term.strip()
        if not term:
            continue
        match = _SORT_TERM.match(term)
        if not match:
            msg = f"Invalid sort parameter: {sort}"
            raise ValueError(msg)
        prefix, field, direction = match.groups()
        descending = prefix == "-" or (direction or "").upper() == "DESC"
        terms.append((field, descending))
    return terms


def _order_by_clause(sort: str) -> str:
    try:
        terms = parse_sort(sort) if sort else []
    except ValueError:
        logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
        terms = []

    if not terms:
        return "id ASC"

    rendered = [f"{field} {'DESC' if descending else 'ASC'}" for field, descending in terms]
    # Rows that tie on every requested key keep insertion order
    if all(field != "id" for field, _ in terms):
        rendered.append(f"id {'DESC' if terms[0][1] else 'ASC'}")
    return ", ".join(rendered)


def _serialize_values(data: dict[str, Any]) -> list[Any]:
    values = []
    for val in data.values():
        if isinstance(val, datetime | date):
            values.append(val.isoformat())
        elif isinstance(val, dict | list):
            values.append(json.dumps(val))
        else:
            values.append(val)
    return values


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_lock = asyncio.Lock()


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.create_function("casefold_contains", 2, _casefold_contains, deterministic=True)

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key not in _db_connections:
        return

    try:
        async with _db_lock:
            conn = _db_connections.pop(cache_key, None)
            if conn is not None:
                await conn.close()
                logger.info(
                    "Closed SQLite connection",
                    extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": str(path)},
                )
    except Exception as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema."""
    from src.core import schema  # noqa: PLC0415 - schema imports this module

    await schema.init_db(db_path=db_path)


def _rows_to_records(cursor: aiosqlite.Cursor, rows: list[Any]) -> list[dict[str, Any]]:
    columns = [description[0] for description in cursor.description]
    return [_convert_record_ids(dict(zip(columns, row, strict=True))) for row in rows]


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        columns_str = ", ".join(data.keys())
        placeholders_str = ", ".join("?" for _ in data)

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, _serialize_values(data))
        await conn.commit()

        record_id = cursor.lastrowid
        result = await get_record(collection=collection, record_id=str(record_id))

        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return result
    except Exception as e:
        if isinstance(e, aiosqlite.OperationalError) and "no such table" in str(e):
            logger.error("Table not found", extra={"collection": collection})
            msg = f"Table '{collection}' does not exist. Call init_db() first."
            raise DatabaseError(msg) from e
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to create record in {collection}: {e}"
        raise DatabaseError(msg) from e


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    if not str(record_id).isdigit():
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return _rows_to_records(cursor, [row])[0]
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise DatabaseError(msg) from e


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)
    if not str(record_id).isdigit():
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        set_clause = ", ".join(f"{key} = ?" for key in data)
        values = _serialize_values(data)
        values.append(int(record_id))

        query = f"UPDATE {collection} SET {set_clause} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, values)
        await conn.commit()

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=record_id)
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to update record in {collection}: {e}"
        raise DatabaseError(msg) from e


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    if not str(record_id).isdigit():
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        await conn.commit()

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("delete_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to delete record from {collection}: {e}"
        raise DatabaseError(msg) from e


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        where_clause, params = parse_filter(filter_query)
        where_sql = f"WHERE {where_clause}" if where_clause else ""
        offset = (max(page, 1) - 1) * per_page

        query = f"SELECT * FROM {collection} {where_sql} ORDER BY {_order_by_clause(sort)} LIMIT ? OFFSET ?"  # noqa: S608 - collection and sort fields are validated
        params.extend([per_page, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        records = _rows_to_records(cursor, list(rows))

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except Exception as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise DatabaseError(msg) from e


async def count_records(*, collection: str, filter_query: str = "") -> int:
    """Count records matching the filter."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        where_clause, params = parse_filter(filter_query)
        where_sql = f"WHERE {where_clause}" if where_clause else ""

        query = f"SELECT COUNT(*) FROM {collection} {where_sql}"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, params)
        row = await cursor.fetchone()
        return int(row[0]) if row else 0
    except Exception as e:
        logger.error("count_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to count records in {collection}: {e}"
        raise DatabaseError(msg) from e


async def get_first_record(*, collection: str, filter_query: str) -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, per_page=1)
    return records[0] if records else None
