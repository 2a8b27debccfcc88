"""Tool catalog and dispatch shared by the MCP and HTTP front-ends."""

import enum
from typing import Any, Awaitable, Callable, Optional

from .errors import UnknownToolError
from .service import DatabaseService, ToolResult


class ToolName(str, enum.Enum):
    EXECUTE_SQL = "execute_sql"
    GET_TABLE_SCHEMA = "get_table_schema"
    LIST_DATABASES = "list_databases"


class ToolDescriptions:
    """Centralized management of tool descriptions."""

    DB_KEY_DESCRIPTION = (
        "The database key to use (e.g., 'maindb', 'reportingdb', etc.). Optional in single-db mode."
    )

    @classmethod
    def get_execute_sql_description(cls, readonly: bool = False) -> str:
        description = "Execute an SQL query on the SQL Server (multi-database support)"
        if readonly:
            description += ". The server is read-only: INSERT, UPDATE and DELETE are rejected"
        return description

    @classmethod
    def get_table_schema_description(cls) -> str:
        return "Retrieve the schema of a specified table (multi-database support)"

    @classmethod
    def get_list_databases_description(cls) -> str:
        return "List all configured databases in the application"


def tool_definitions(readonly: bool = False) -> list[dict[str, Any]]:
    """Static tool descriptors with their input schemas."""
    return [
        {
            "name": ToolName.EXECUTE_SQL.value,
            "description": ToolDescriptions.get_execute_sql_description(readonly),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The SQL query to execute"},
                    "dbKey": {"type": "string", "description": ToolDescriptions.DB_KEY_DESCRIPTION},
                },
                "required": ["query"],
            },
        },
        {
            "name": ToolName.GET_TABLE_SCHEMA.value,
            "description": ToolDescriptions.get_table_schema_description(),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "table": {"type": "string", "description": "The name of the table"},
                    "dbKey": {"type": "string", "description": ToolDescriptions.DB_KEY_DESCRIPTION},
                },
                "required": ["table"],
            },
        },
        {
            "name": ToolName.LIST_DATABASES.value,
            "description": ToolDescriptions.get_list_databases_description(),
            "inputSchema": {"type": "object", "properties": {}, "required": []},
        },
    ]


ToolHandler = Callable[[DatabaseService, dict[str, Any]], Awaitable[ToolResult]]


async def _execute_sql(service: DatabaseService, arguments: dict[str, Any]) -> ToolResult:
    return await service.run_query(arguments.get("query"), arguments.get("dbKey"))


async def _get_table_schema(service: DatabaseService, arguments: dict[str, Any]) -> ToolResult:
    return await service.get_table_schema(arguments.get("table"), arguments.get("dbKey"))


async def _list_databases(service: DatabaseService, arguments: dict[str, Any]) -> ToolResult:
    return await service.list_databases()


TOOL_HANDLERS: dict[ToolName, ToolHandler] = {
    ToolName.EXECUTE_SQL: _execute_sql,
    ToolName.GET_TABLE_SCHEMA: _get_table_schema,
    ToolName.LIST_DATABASES: _list_databases,
}

# Every tool in the catalog must have exactly one handler
_missing = set(ToolName) - set(TOOL_HANDLERS)
if _missing:
    raise RuntimeError(f"Tools without a handler: {sorted(tool.value for tool in _missing)}")


def resolve_tool(name: str) -> ToolName:
    """Map a tool name to its enum member.

    Raises:
        UnknownToolError: If the name is not in the catalog
    """
    try:
        return ToolName(name)
    except ValueError:
        raise UnknownToolError(f"Unknown tool: {name}") from None


async def call_tool(
    service: DatabaseService, name: str, arguments: Optional[dict[str, Any]] = None
) -> ToolResult:
    tool = resolve_tool(name)
    return await TOOL_HANDLERS[tool](service, arguments or {})
