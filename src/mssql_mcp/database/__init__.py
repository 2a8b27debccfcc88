"""Database access layer for the mssql-mcp gateway.

Architecture:
- connection.py: Per-key connection pools and the pool cache
- validation.py: Query safety classification and input validation
- formatting.py: CSV and JSON rendering of results
- logging.py: Structured logging of connections and queries
"""

from mssql_mcp.database.connection import ConnectionPool, ConnectionStatus, PoolCache, QueryResult
from mssql_mcp.database.formatting import format_csv, to_json
from mssql_mcp.database.validation import QueryClassifier, RegexQueryClassifier, Verdict, is_safe_query

__all__ = [
    "ConnectionPool",
    "ConnectionStatus",
    "PoolCache",
    "QueryResult",
    "format_csv",
    "to_json",
    "QueryClassifier",
    "RegexQueryClassifier",
    "Verdict",
    "is_safe_query",
]
