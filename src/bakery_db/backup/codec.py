"""JSON encoding of column values for snapshot artifacts.

``to_jsonable`` turns driver values into JSON-safe values when a snapshot
is written; ``coerce_value`` turns them back into driver values by the
live column's data type when an artifact is restored.

Encoding rules:

* UUID -> string
* date / time / timestamp -> ISO-8601 string
* numeric -> decimal string (exact; floats would round)
* bytea -> base64 string
* interval -> ``"<seconds> seconds"``
* json / jsonb -> structured value (decoded if the driver returned text)

asyncpg binds parameters by the server-inferred type and rejects strings
for dates or numerics, so PostgreSQL restores coerce every typed column.
SQLite stores declared types as text and only needs JSON re-encoding.
"""

import base64
import json
import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

logger = logging.getLogger(__name__)

JSON_TYPES = frozenset({"json", "jsonb"})
_TRUE = {"true", "t", "1", "yes", "y", "on"}
_FALSE = {"false", "f", "0", "no", "n", "off"}


def is_json_type(data_type: str) -> bool:
    return data_type in JSON_TYPES


def to_jsonable(value: Any, data_type: str = "") -> Any:
    """Convert one column value to a JSON-serializable value."""
    if value is None:
        return None
    if is_json_type(data_type):
        if isinstance(value, (str, bytes)):
            try:
                return json.loads(value)
            except ValueError:
                # Not valid JSON; keep the raw text rather than lose it
                return value.decode() if isinstance(value, bytes) else value
        return value
    if isinstance(value, bool) or isinstance(value, (int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return f"{value.total_seconds():g} seconds"
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    return str(value)


def encode_row(row: dict[str, Any], types: dict[str, str]) -> dict[str, Any]:
    """Apply ``to_jsonable`` to every value of *row*, preserving key order."""
    return {col: to_jsonable(val, types.get(col, "")) for col, val in row.items()}


def _parse_datetime(value: str) -> datetime:
    # fromisoformat only accepts a trailing Z from Python 3.11 onwards
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value.replace(" ", "T", 1))


def _parse_bool(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return value


def _parse_bytes(value: Any) -> Any:
    # Node's Buffer.toJSON() shape, written by the legacy backup script
    if isinstance(value, dict) and value.get("type") == "Buffer":
        return bytes(value.get("data", []))
    if isinstance(value, str):
        if value.startswith("\\x"):
            return bytes.fromhex(value[2:])
        return base64.b64decode(value)
    return value


def _parse_interval(value: Any) -> Any:
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if isinstance(value, str):
        number, _, unit = value.strip().partition(" ")
        if unit in ("seconds", "second", "") and number:
            return timedelta(seconds=float(number))
    return value


def _coerce_postgres(value: Any, data_type: str) -> Any:
    if data_type == "timestamptz" and isinstance(value, str):
        parsed = _parse_datetime(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if data_type == "timestamp" and isinstance(value, str):
        parsed = _parse_datetime(value)
        if parsed.tzinfo:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    if data_type == "date" and isinstance(value, str):
        if len(value) > 10:
            # Legacy artifacts serialized DATE columns as full timestamps
            return _parse_datetime(value).date()
        return date.fromisoformat(value)
    if data_type in ("time", "timetz") and isinstance(value, str):
        return time.fromisoformat(value)
    if data_type == "numeric" and isinstance(value, (str, int, float)):
        return Decimal(str(value))
    if data_type in ("int", "smallint", "bigint") and isinstance(value, str):
        return int(value)
    if data_type in ("float4", "float8") and isinstance(value, str):
        return float(value)
    if data_type == "bool":
        return _parse_bool(value)
    if data_type == "uuid" and isinstance(value, str):
        return uuid.UUID(value)
    if data_type == "bytea":
        return _parse_bytes(value)
    if data_type == "interval":
        return _parse_interval(value)
    return value


def coerce_value(value: Any, data_type: str, dialect: str) -> Any:
    """Convert an artifact value back to a bindable driver value.

    Args:
        value: Value as read from the artifact JSON.
        data_type: Normalized data type of the live column.
        dialect: SQLAlchemy dialect name of the target database.

    Raises:
        ValueError: The value cannot represent the column type.
    """
    if value is None:
        return None
    if is_json_type(data_type):
        return json.dumps(value)
    if dialect != "postgresql":
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value
    try:
        return _coerce_postgres(value, data_type)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Cannot convert {value!r} to {data_type}") from exc


def decode_row(
    row: dict[str, Any], types: dict[str, str], dialect: str
) -> dict[str, Any]:
    """Apply ``coerce_value`` to every value of *row*."""
    return {col: coerce_value(val, types[col], dialect) for col, val in row.items()}
