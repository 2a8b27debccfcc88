"""HTTP front-end exposing the same operations as the MCP server."""

import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from .config import load_settings
from .constants import EXIT_FAILURE, SERVER_NAME, SERVER_VERSION
from .errors import ConfigError, GatewayError, ValidationError
from .server import log_startup, setup_logging
from .service import DatabaseService, ToolResult
from .tools import tool_definitions

logger = logging.getLogger("mssql_mcp.api")

router = APIRouter()


class ExecuteSqlRequest(BaseModel):
    query: Optional[str] = None
    dbKey: Optional[str] = None


class TableSchemaRequest(BaseModel):
    table: Optional[str] = None
    dbKey: Optional[str] = None


def error_response(request: Request, message: str, status_code: int) -> JSONResponse:
    """Error body shared by every route: error, path, timestamp."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "path": request.url.path,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def get_service(request: Request) -> DatabaseService:
    return request.app.state.service


def tool_response(result: ToolResult) -> Response:
    if result.is_error:
        raise GatewayError(result.payload["error"], result.status_code)
    return Response(content=result.text, media_type="application/json")


@router.get("/resources")
async def list_resources(
    dbKey: Optional[str] = None,
    service: DatabaseService = Depends(get_service),
) -> list[dict]:
    """List SQL Server tables as resources."""
    listings = await service.list_tables(dbKey)
    return [listing.as_dict() for listing in listings]


@router.get("/resource")
async def read_resource(
    uri: Optional[str] = None,
    dbKey: Optional[str] = None,
    service: DatabaseService = Depends(get_service),
) -> PlainTextResponse:
    """Read the first rows of a table as CSV."""
    if not uri:
        raise ValidationError("Parameter 'uri' is required")
    data = await service.read_table_rows(uri, dbKey)
    return PlainTextResponse(data)


@router.get("/tools")
async def list_tools(service: DatabaseService = Depends(get_service)) -> list[dict]:
    return tool_definitions(service.readonly)


@router.get("/databases")
async def list_databases(service: DatabaseService = Depends(get_service)) -> Response:
    return tool_response(await service.list_databases())


@router.post("/execute-sql")
async def execute_sql(
    body: ExecuteSqlRequest,
    service: DatabaseService = Depends(get_service),
) -> Response:
    if not body.query:
        raise ValidationError("Parameter 'query' is required")
    return tool_response(await service.run_query(body.query, body.dbKey))


@router.post("/get-table-schema")
async def get_table_schema(
    body: TableSchemaRequest,
    service: DatabaseService = Depends(get_service),
) -> Response:
    if not body.table:
        raise ValidationError("Parameter 'table' is required")
    return tool_response(await service.get_table_schema(body.table, body.dbKey))


@router.get("/health")
async def health_check(service: DatabaseService = Depends(get_service)) -> JSONResponse:
    """
    Check every configured database connection.

    Returns 200 if all databases connect, 503 if any of them fails.
    """
    healthy, databases = await service.check_health()
    if healthy:
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok", "databases": databases})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "error",
            "message": "One or more database connections failed.",
            "databases": databases,
        },
    )


def create_app(service: DatabaseService) -> FastAPI:
    """Create the FastAPI application around a database service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await service.close()

    app = FastAPI(title=SERVER_NAME, version=SERVER_VERSION, lifespan=lifespan)
    app.state.service = service
    app.include_router(router)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        logger.error(f"Error processing request: {exc.message}")
        return error_response(request, exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = ", ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return error_response(request, f"Validation failed: {messages}", status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error processing {request.url.path}")
        return error_response(request, str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return app


def run():
    """Entry point for the mssql-mcp-http command."""
    import uvicorn

    load_dotenv()

    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logging.getLogger("mssql_mcp").error(e.message)
        sys.exit(EXIT_FAILURE)

    setup_logging(settings.log_level)
    log_startup(settings)

    service = DatabaseService(settings.databases, readonly=settings.readonly)
    app = create_app(service)

    host = os.environ.get("HOST", "0.0.0.0")
    logger.info(f"{SERVER_NAME} HTTP server listening on {host}:{settings.http_port}")
    uvicorn.run(app, host=host, port=settings.http_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
