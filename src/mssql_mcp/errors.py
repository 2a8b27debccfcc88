"""Error taxonomy shared by the core and both transports."""

from typing import Optional


class GatewayError(Exception):
    """Base error carrying the HTTP status a transport should report."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(GatewayError):
    """Malformed or out-of-range input. Never reaches the database."""

    status_code = 400


class ConfigError(GatewayError):
    """Unknown database key or missing configuration."""

    status_code = 400


class NotFoundError(GatewayError):
    """Requested object does not exist."""

    status_code = 404


class DatabaseError(GatewayError):
    """Driver-level failure (connectivity, syntax, missing object)."""

    status_code = 500


class UnknownToolError(GatewayError):
    """Tool name outside the published catalog."""

    status_code = 400
