"""
Audit action and resource kinds.

Closed set of values written to the audit trail. Failure outcomes of
administrative operations are declared here as explicit variants.
"""

from enum import Enum


class AuditAction(Enum):
    """Kinds of audited events."""
    APIKEY_CREATED = "apikey_created"
    APIKEY_ACTIVATED = "apikey_activated"
    APIKEY_DEACTIVATED = "apikey_deactivated"
    APIKEY_REVOKED = "apikey_revoked"
    APIKEY_LIMITS_MODIFIED = "apikey_limits_modified"
    APIKEY_UPDATE_FAILED = "apikey_update_failed"

    PROJECT_LIMITS_CHECKED = "project_limits_checked"
    PROJECT_LIMITS_CHECK_FAILED = "project_limits_check_failed"
    BUDGET_ALERT_CREATED = "budget_alert_created"
    COST_ALERT_TRIGGERED = "cost_alert_triggered"
    COST_ALERTS_CHECK_FAILED = "cost_alerts_check_failed"

    COMPLETION_SUCCESS = "completion_success"
    COMPLETION_FAILED = "completion_failed"
    COMPLETION_RATE_LIMITED = "completion_rate_limited"
    COMPLETION_QUOTA_EXCEEDED = "completion_quota_exceeded"

    API_REQUEST_UNAUTHORIZED = "api_request_unauthorized"
    API_REQUEST_INVALID_KEY = "api_request_invalid_key"


class AuditResource(Enum):
    """Kinds of resources an audit entry refers to."""
    USER = "user"
    APIKEY = "apikey"
    PROJECT = "project"
    COST_ALERT = "cost_alert"
    COMPLETION = "completion"
    API_REQUEST = "api_request"


class FailureReason(Enum):
    """Reason tag attached to rejected or failed completion requests."""
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_REQUEST = "invalid_request"
    SERVER_ERROR = "server_error"


class BlockReason(Enum):
    """Reason tag for requests blocked before a key was resolved."""
    UNAUTHORIZED = "unauthorized"
    INVALID_KEY = "invalid_key"
