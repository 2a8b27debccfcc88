"""Constants and static configuration for the mssql-mcp gateway."""

# Application constants
SERVER_NAME = "mssql-mcp"
SERVER_VERSION = "1.0.0"
EXIT_FAILURE = 1
DEFAULT_HTTP_PORT = 3000

# Connection defaults
DEFAULT_PORT = 1433
DEFAULT_SERVER = "localhost"
DEFAULT_DB_KEY = "maindb"  # Key used in single-database mode
CONNECTION_TIMEOUT_MS = 30_000
REQUEST_TIMEOUT_MS = 30_000
POOL_MAX = 10
POOL_MIN = 0
POOL_IDLE_TIMEOUT_MS = 30_000

# Input limits
MAX_QUERY_LENGTH = 10_000
MAX_TABLE_NAME_LENGTH = 128
MAX_DB_KEY_LENGTH = 50
IDENTIFIER_PATTERN = r"^[a-zA-Z0-9_]+$"
RESOURCE_URI_PATTERN = r"^mssql://([a-zA-Z0-9_]+)/data$"

# Resource listing
RESOURCE_CACHE_TTL = 5 * 60  # 5 minutes
RESOURCE_CACHE_SIZE = 128
TABLE_SAMPLE_ROWS = 100
RESOURCE_MIME_TYPE = "text/plain"

# Messages
BLOCKED_QUERY_MESSAGE = "Query contains potentially unsafe operations and was blocked for security"
QUERY_SUCCESS_MESSAGE = "Query executed successfully"
