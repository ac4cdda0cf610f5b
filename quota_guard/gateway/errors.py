"""
Gateway error taxonomy.

Every error response carries a stable ``type`` for programmatic handling
and a human-readable ``message``. Internals are never exposed.
"""

from typing import Any, Dict, Optional

from quota_guard.core.quota import KeyStatus

AUTHENTICATION_ERROR = "authentication_error"
INVALID_REQUEST_ERROR = "invalid_request_error"
API_ERROR = "api_error"
SERVER_ERROR = "server_error"
OVERLOADED_ERROR = "overloaded_error"
UNAVAILABLE_ERROR = "unavailable_error"


class GatewayError(Exception):
    """An error response the gateway returns to the caller."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.message = message
        self.code = code
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"message": self.message, "type": self.error_type}
        if self.code is not None:
            error["code"] = self.code
        if self.details is not None:
            error["details"] = self.details
        return {"error": error}


def internal_error() -> GatewayError:
    return GatewayError(500, API_ERROR, "Internal Server Error")


# Quota outcomes mapped to (status code, message). Inactive and expired are
# 403; only quota pressure is 429.
QUOTA_REJECTIONS = {
    KeyStatus.LIMIT_EXCEEDED: (429, "API Key usage limit exceeded"),
    KeyStatus.INACTIVE: (403, "API Key is inactive"),
    KeyStatus.EXPIRED: (403, "API Key has expired"),
    KeyStatus.NOT_FOUND: (403, "API Key not found"),
}


def quota_rejection(status: KeyStatus) -> GatewayError:
    status_code, message = QUOTA_REJECTIONS[status]
    return GatewayError(status_code, AUTHENTICATION_ERROR, message)
