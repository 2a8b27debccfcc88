"""Query safety classification and input validation."""

import enum
import re
from typing import Optional, Protocol

from ..constants import (
    IDENTIFIER_PATTERN,
    MAX_DB_KEY_LENGTH,
    MAX_QUERY_LENGTH,
    MAX_TABLE_NAME_LENGTH,
    RESOURCE_URI_PATTERN,
)
from ..errors import ValidationError

# Statements blocked in every mode. Matched anywhere in the text, not only at the start.
UNSAFE_PATTERNS = [
    r'\s*DROP\s+',
    r'\s*TRUNCATE\s+',
    r'\s*ALTER\s+ROLE\s+',
    r'\s*CREATE\s+LOGIN\s+',
    r'\s*ALTER\s+LOGIN\s+',
    r'\s*CREATE\s+USER\s+',
    r'\s*ALTER\s+USER\s+',
    r'\s*EXEC(\s+|\s*\()',
    r'\s*EXECUTE(\s+|\s*\()',
    r'\s*xp_cmdshell',
    r'\s*sp_configure',
    r'\s*RECONFIGURE\s*',
    r'\s*GRANT\s+',
    r'\s*REVOKE\s+',
    r'\s*DENY\s+',
]

# Additionally blocked when the gateway runs read-only
READONLY_PATTERNS = [
    r'\s*INSERT\s+',
    r'\s*UPDATE\s+',
    r'\s*DELETE\s+',
]

_IDENTIFIER = re.compile(IDENTIFIER_PATTERN)
_RESOURCE_URI = re.compile(RESOURCE_URI_PATTERN)


class Verdict(enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


class QueryClassifier(Protocol):
    """Decides whether a raw SQL string may be sent to the database."""

    def classify(self, query: str, readonly: bool) -> Verdict:
        ...


class RegexQueryClassifier:
    """Heuristic keyword filter. Not a parser.

    Can reject benign text that mentions a blocked keyword inside a string
    literal, and can miss obfuscated statements.
    """

    unsafe_patterns = UNSAFE_PATTERNS
    readonly_patterns = READONLY_PATTERNS

    def __init__(self):
        self._unsafe = [re.compile(p, re.IGNORECASE) for p in self.unsafe_patterns]
        self._readonly = [re.compile(p, re.IGNORECASE) for p in self.readonly_patterns]

    def classify(self, query: str, readonly: bool) -> Verdict:
        normalized = query.strip().upper()
        patterns = self._unsafe + self._readonly if readonly else self._unsafe

        for pattern in patterns:
            if pattern.search(normalized):
                return Verdict.DENY
        return Verdict.ALLOW


_default_classifier = RegexQueryClassifier()


def is_safe_query(query: str, readonly: bool = False) -> bool:
    """Quick check with the default classifier."""
    return _default_classifier.classify(query, readonly) is Verdict.ALLOW


def _validate_identifier(value: Optional[str], label: str, max_length: int) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{label} cannot be empty")
    if len(value) > max_length:
        raise ValidationError(f"{label} is too long")
    if not _IDENTIFIER.fullmatch(value):
        raise ValidationError(f"{label} can only contain alphanumeric characters and underscores")
    return value


def validate_table_name(table: Optional[str]) -> str:
    return _validate_identifier(table, "Table name", MAX_TABLE_NAME_LENGTH)


def validate_db_key(db_key: Optional[str]) -> str:
    return _validate_identifier(db_key, "Database key", MAX_DB_KEY_LENGTH)


def validate_query_text(query: Optional[str]) -> str:
    """Validate length and non-emptiness of an ad-hoc query.

    Raises:
        ValidationError: If the query is empty, blank or longer than the limit
    """
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("SQL query cannot be empty")
    if len(query) > MAX_QUERY_LENGTH:
        raise ValidationError("SQL query is too long")
    return query


def parse_resource_uri(uri: Optional[str]) -> str:
    """Extract the table name from a ``mssql://<table>/data`` URI."""
    match = _RESOURCE_URI.fullmatch(uri) if isinstance(uri, str) else None
    if not match:
        raise ValidationError("URI must match the pattern mssql://<table_name>/data")
    return match.group(1)
