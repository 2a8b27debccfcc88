"""Result formatting for transport payloads."""

import datetime
import decimal
import json
import uuid
from typing import Any, Sequence

CSV_SPECIAL_CHARS = (",", '"', "\n", "\r")


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex().upper()
    return str(value)


def format_csv_field(value: Any) -> str:
    """Render one CSV field with RFC 4180 quoting.

    None renders as an empty field. Fields containing a comma, a quote or a
    line break are wrapped in quotes with inner quotes doubled.
    """
    if value is None:
        return ""
    text = _scalar_text(value)
    if any(char in text for char in CSV_SPECIAL_CHARS):
        return '"' + text.replace('"', '""') + '"'
    return text


def format_csv(columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> str:
    """Format rows as CSV text: header line, then one line per row.

    Args:
        columns: Column names in result order
        rows: Result rows keyed by column name

    Returns:
        Newline-separated CSV without a trailing newline
    """
    lines = [",".join(format_csv_field(col) for col in columns)]
    for row in rows:
        lines.append(",".join(format_csv_field(row.get(col)) for col in columns))
    return "\n".join(lines)


def json_default(value: Any) -> Any:
    """Serialize driver values the json module does not know."""
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex().upper()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=json_default)
