"""mssql-mcp MCP server - Expose SQL Server databases to MCP clients over stdio."""

import sys
import logging
from typing import Any, Optional

from dotenv import load_dotenv
from mcp.server import Server
import mcp.server.stdio
import mcp.types as types
from mcp.server.lowlevel import NotificationOptions
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.models import InitializationOptions

from .config import Settings, load_settings
from .constants import EXIT_FAILURE, RESOURCE_MIME_TYPE, SERVER_NAME, SERVER_VERSION
from .errors import ConfigError
from .service import DatabaseService
from .tools import call_tool, tool_definitions

logger = logging.getLogger("mssql_mcp")


def setup_logging(level: str = "INFO") -> None:
    """Send log lines to stderr; stdout carries the MCP protocol."""
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        logger.addHandler(handler)


class MssqlMcpServer(Server):
    """MCP Server that owns the database service."""

    def __init__(self, name: str, service: DatabaseService):
        super().__init__(name)
        self.service = service


async def handle_list_resources(service: DatabaseService, db_key: Optional[str] = None) -> list[types.Resource]:
    listings = await service.list_tables(db_key)
    return [
        types.Resource(
            uri=listing.uri,
            name=listing.name,
            description=listing.description,
            mimeType=listing.mime_type,
        )
        for listing in listings
    ]


async def handle_read_resource(service: DatabaseService, uri: str) -> list[ReadResourceContents]:
    data = await service.read_table_rows(uri)
    return [ReadResourceContents(content=data, mime_type=RESOURCE_MIME_TYPE)]


def handle_list_tools(service: DatabaseService) -> list[types.Tool]:
    return [types.Tool(**definition) for definition in tool_definitions(service.readonly)]


async def handle_call_tool(
    service: DatabaseService, name: str, arguments: Optional[dict[str, Any]]
) -> types.CallToolResult:
    """Dispatch a tool call. Unknown names raise UnknownToolError."""
    result = await call_tool(service, name, arguments)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=result.text)],
        isError=result.is_error,
    )


def create_server(service: DatabaseService) -> MssqlMcpServer:
    """Build the MCP server and register its request handlers."""
    server = MssqlMcpServer(SERVER_NAME, service)

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        """List base tables as resources."""
        return await handle_list_resources(server.service)

    @server.read_resource()
    async def read_resource(uri) -> list[ReadResourceContents]:
        """Read the first rows of a table as CSV."""
        return await handle_read_resource(server.service, str(uri))

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return handle_list_tools(server.service)

    @server.call_tool()
    async def call_tool_handler(name: str, arguments: dict) -> types.CallToolResult:
        logger.debug(f"call_tool invoked: {name}")
        return await handle_call_tool(server.service, name, arguments)

    return server


def log_startup(settings: Settings) -> None:
    """Log the configured databases without credentials."""
    logger.info(f"Starting {SERVER_NAME} v{SERVER_VERSION}")
    for key, config in settings.databases.items():
        logger.info(f"Database {key}: {config.user}@{config.server}:{config.port}/{config.database}")
    logger.info(f"Default database: {next(iter(settings.databases))}")
    if settings.readonly:
        logger.info("Read-only mode: INSERT, UPDATE and DELETE are blocked")


async def main():
    """Load configuration and serve MCP over stdio."""
    load_dotenv()

    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logger.error(e.message)
        sys.exit(EXIT_FAILURE)

    setup_logging(settings.log_level)
    log_startup(settings)

    service = DatabaseService(settings.databases, readonly=settings.readonly)
    server = create_server(service)

    try:
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            init_options = InitializationOptions(
                server_name=SERVER_NAME,
                server_version=SERVER_VERSION,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            )
            await server.run(read_stream, write_stream, init_options)
    except Exception as e:
        logger.exception(f"MCP Server error: {type(e).__name__}: {e}")
        sys.exit(EXIT_FAILURE)
    finally:
        await service.close()


def run():
    """Entry point for the mssql-mcp command."""
    import asyncio

    asyncio.run(main())


if __name__ == "__main__":
    run()
