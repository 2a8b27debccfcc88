"""mssql-mcp - SQL Server gateway for MCP clients and HTTP callers."""

from mssql_mcp.constants import SERVER_VERSION

__version__ = SERVER_VERSION
