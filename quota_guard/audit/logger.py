"""
Audit trail writer.

Persists audit entries enriched with request metadata. Writes are
best-effort: a failure is logged and never breaks the calling operation.
"""

import secrets
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import structlog

from quota_guard.storage.audit import AuditRepository
from quota_guard.storage.models import AuditLogEntry

from .actions import AuditAction, AuditResource, BlockReason, FailureReason
from .geo import GeoLocator

logger = structlog.get_logger(__name__)

ANONYMOUS = "anonymous"

_FAILURE_ACTIONS = {
    FailureReason.RATE_LIMIT: AuditAction.COMPLETION_RATE_LIMITED,
    FailureReason.QUOTA_EXCEEDED: AuditAction.COMPLETION_QUOTA_EXCEEDED,
    FailureReason.INVALID_REQUEST: AuditAction.COMPLETION_FAILED,
    FailureReason.SERVER_ERROR: AuditAction.COMPLETION_FAILED,
}

_BLOCK_ACTIONS = {
    BlockReason.UNAUTHORIZED: AuditAction.API_REQUEST_UNAUTHORIZED,
    BlockReason.INVALID_KEY: AuditAction.API_REQUEST_INVALID_KEY,
}


@dataclass(frozen=True)
class RequestContext:
    """Client metadata captured from an inbound request."""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    method: Optional[str] = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        method: Optional[str] = None,
        peer: Optional[str] = None,
    ) -> "RequestContext":
        """Build a context, preferring proxy headers over the socket peer."""
        lowered = {k.lower(): v for k, v in headers.items()}
        ip = lowered.get("cf-connecting-ip") or lowered.get("x-real-ip")
        if not ip and lowered.get("x-forwarded-for"):
            ip = lowered["x-forwarded-for"].split(",")[0].strip()
        return cls(
            ip_address=ip or peer or "unknown",
            user_agent=lowered.get("user-agent") or "unknown",
            method=method,
        )


def generate_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


class AuditLogger:
    """Writes audit entries through an AuditRepository."""

    def __init__(self, repository: AuditRepository, geolocator: Optional[GeoLocator] = None):
        self.repository = repository
        self.geolocator = geolocator

    def log(
        self,
        user_id: str,
        action: AuditAction,
        resource: AuditResource,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> Optional[AuditLogEntry]:
        """Persist one entry. Returns None if the write failed."""
        request_id = (details or {}).get("requestId") or generate_request_id()
        geo = None
        if context is not None and self.geolocator is not None:
            try:
                geo = self.geolocator.locate(context.ip_address)
            except Exception as e:
                logger.warning("audit_geolocation_failed", action=action.value, error=str(e))

        entry = AuditLogEntry(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details={**(details or {}), "requestId": request_id},
            ip_address=context.ip_address if context else None,
            user_agent=context.user_agent if context else None,
            geo_location=geo,
            request_id=request_id,
            request_type=context.method if context else None,
            timestamp=datetime.now(),
        )
        try:
            self.repository.insert(entry)
        except sqlite3.Error as e:
            logger.error("audit_write_failed", action=action.value, error=str(e))
            return None
        return entry

    def log_completion_success(
        self,
        user_id: str,
        api_key_id: str,
        details: Dict[str, Any],
        context: Optional[RequestContext] = None,
    ) -> Optional[AuditLogEntry]:
        return self.log(
            user_id,
            AuditAction.COMPLETION_SUCCESS,
            AuditResource.COMPLETION,
            resource_id=details.get("requestId"),
            details={**details, "apiKeyId": api_key_id},
            context=context,
        )

    def log_completion_failure(
        self,
        user_id: str,
        api_key_id: str,
        reason: FailureReason,
        details: Dict[str, Any],
        context: Optional[RequestContext] = None,
    ) -> Optional[AuditLogEntry]:
        """Record a rejected or failed completion tagged with its reason."""
        return self.log(
            user_id,
            _FAILURE_ACTIONS[reason],
            AuditResource.COMPLETION,
            resource_id=details.get("requestId"),
            details={**details, "apiKeyId": api_key_id, "reason": reason.value},
            context=context,
        )

    def log_api_request_blocked(
        self,
        user_id: Optional[str],
        reason: BlockReason,
        details: Dict[str, Any],
        context: Optional[RequestContext] = None,
    ) -> Optional[AuditLogEntry]:
        return self.log(
            user_id or ANONYMOUS,
            _BLOCK_ACTIONS[reason],
            AuditResource.API_REQUEST,
            resource_id=details.get("requestId"),
            details={**details, "reason": reason.value},
            context=context,
        )

    def log_user_action(
        self,
        user_id: str,
        action: AuditAction,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> Optional[AuditLogEntry]:
        return self.log(user_id, action, AuditResource.USER, user_id, details, context)

    def log_api_key_action(
        self,
        user_id: str,
        action: AuditAction,
        api_key_id: str,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> Optional[AuditLogEntry]:
        return self.log(user_id, action, AuditResource.APIKEY, api_key_id, details, context)
