"""
Request admission for chat completions.

Admission Order:
1. Bearer key resolution - missing, unknown, inactive or revoked keys rejected
2. Quota evaluation - any non-ok key status rejected (429 for limit pressure)
3. Payload validation - malformed JSON or shape rejected with 400
4. Model resolution - unknown models rejected with 404
5. Upstream call - provider failures recorded as zero-cost usage
6. Billing - markup applied and the usage record appended

Every branch writes exactly one audit entry. Usage records are written only
once a model is resolved (provider failure or success).

Quota checks are not serialised with the ledger write: concurrent requests
on one key can each pass the check, so a limit may be overshot by the cost
of the requests in flight.
"""

import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import structlog
from pydantic import ValidationError

from quota_guard.audit.actions import BlockReason, FailureReason
from quota_guard.audit.logger import AuditLogger, RequestContext, generate_request_id
from quota_guard.core.pricing import ModelConfig, compute_billed_cost, get_model
from quota_guard.core.quota import KeyStatus, get_key_usage_status
from quota_guard.storage.keys import ApiKeyRepository
from quota_guard.storage.models import ApiKey, UsageRecord
from quota_guard.storage.projects import ProjectRepository
from quota_guard.storage.repository import UsageRepository

from .errors import (
    AUTHENTICATION_ERROR,
    INVALID_REQUEST_ERROR,
    API_ERROR,
    GatewayError,
    internal_error,
    quota_rejection,
)
from .schemas import ChatCompletionRequest
from .simulator import ProviderSimulator

logger = structlog.get_logger(__name__)

ENDPOINT = "/v1/chat/completions"
ZERO = Decimal("0")

RawBody = Union[bytes, str, Dict[str, Any]]


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    payload: Dict[str, Any]

    @classmethod
    def from_error(cls, error: GatewayError) -> "GatewayResponse":
        return cls(error.status_code, error.to_payload())


@dataclass
class _Attempt:
    """Mutable state of one request, used for the failure audit entry."""
    request_id: str
    context: Optional[RequestContext]
    started: float
    key: Optional[ApiKey] = None
    audit_user_id: Optional[str] = None
    model_id: str = "unknown"
    provider: str = "unknown"
    audited: bool = False


class AdmissionGate:
    """Admits, executes and bills completion requests."""

    def __init__(
        self,
        keys: ApiKeyRepository,
        projects: ProjectRepository,
        ledger: UsageRepository,
        audit: AuditLogger,
        simulator: ProviderSimulator,
        markup_percent: Decimal = Decimal("20"),
    ):
        self.keys = keys
        self.projects = projects
        self.ledger = ledger
        self.audit = audit
        self.simulator = simulator
        self.markup_percent = markup_percent

    def handle(
        self,
        authorization: Optional[str],
        body: RawBody,
        context: Optional[RequestContext] = None,
    ) -> GatewayResponse:
        """Process one completion request end to end.

        Args:
            authorization: Value of the Authorization header
            body: Raw JSON body, or an already decoded mapping
            context: Client metadata for the audit trail

        Returns:
            GatewayResponse with the HTTP status code and JSON payload
        """
        attempt = _Attempt(
            request_id=generate_request_id(),
            context=context,
            started=time.monotonic(),
        )
        try:
            return self._process(attempt, authorization, body)
        except GatewayError as e:
            return GatewayResponse.from_error(e)
        except Exception:
            logger.exception("completion_unhandled_error", request_id=attempt.request_id)
            if not attempt.audited and attempt.key is not None and attempt.audit_user_id:
                try:
                    self._audit_failure(attempt, FailureReason.SERVER_ERROR, "Internal Server Error")
                except Exception:
                    logger.exception("completion_failure_audit_failed", request_id=attempt.request_id)
            return GatewayResponse.from_error(internal_error())

    def _process(
        self,
        attempt: _Attempt,
        authorization: Optional[str],
        body: RawBody,
    ) -> GatewayResponse:
        key = self._resolve_key(attempt, authorization)
        attempt.key = key

        billing_user_id = self._billing_user_id(key)
        attempt.audit_user_id = billing_user_id or key.user_id

        usage_status = get_key_usage_status(key.id, self.keys, self.ledger)
        if usage_status.status != KeyStatus.OK:
            error = quota_rejection(usage_status.status)
            reason = (
                FailureReason.QUOTA_EXCEEDED
                if usage_status.status == KeyStatus.LIMIT_EXCEEDED
                else FailureReason.RATE_LIMIT
            )
            self._audit_failure(attempt, reason, error.message)
            raise error

        request = self._parse_body(attempt, body)
        attempt.model_id = request.model

        if billing_user_id is None:
            logger.error("key_without_billable_user", key_id=key.id)
            error = GatewayError(
                500,
                API_ERROR,
                "Internal Server Error: Key is not associated with a billable entity.",
            )
            self._audit_failure(attempt, FailureReason.SERVER_ERROR, error.message)
            raise error

        model = get_model(request.model)
        if model is None:
            error = GatewayError(404, INVALID_REQUEST_ERROR, f"Model not found: {request.model}")
            self._audit_failure(attempt, FailureReason.INVALID_REQUEST, error.message)
            raise error
        attempt.provider = model.provider_id

        provider_error = self.simulator.provider_failure(model)
        if provider_error is not None:
            self._record_provider_failure(key, billing_user_id, model, provider_error)
            self._audit_failure(attempt, FailureReason.SERVER_ERROR, provider_error.message)
            raise provider_error

        return self._complete(attempt, key, billing_user_id, model, request)

    def _resolve_key(self, attempt: _Attempt, authorization: Optional[str]) -> ApiKey:
        if not authorization or not authorization.startswith("Bearer "):
            self._audit_blocked(attempt, None, BlockReason.UNAUTHORIZED, None)
            raise GatewayError(401, AUTHENTICATION_ERROR, "Unauthorized: Missing or invalid API key.")

        raw_key = authorization[len("Bearer "):].strip()
        key = self.keys.get_key_by_raw(raw_key) if raw_key else None

        if key is None or not key.active or key.revoked_at is not None:
            if key is not None and key.revoked_at is not None:
                message = "Forbidden: This API Key has been permanently revoked."
            elif key is not None:
                message = "Forbidden: This API Key is currently inactive."
            else:
                message = "Forbidden: Invalid, inactive, or expired API Key."
            self._audit_blocked(
                attempt,
                key.user_id if key else None,
                BlockReason.INVALID_KEY,
                key.id if key else None,
            )
            raise GatewayError(403, AUTHENTICATION_ERROR, message)

        self.keys.touch_last_used(key.id)
        return key

    def _billing_user_id(self, key: ApiKey) -> Optional[str]:
        """Project keys bill the project owner; personal keys bill their user."""
        if key.project_id is None:
            return key.user_id
        project = self.projects.get_project(key.project_id)
        return project.owner_id if project else None

    def _parse_body(self, attempt: _Attempt, body: RawBody) -> ChatCompletionRequest:
        if isinstance(body, (bytes, str)):
            try:
                data = json.loads(body)
            except ValueError:
                self._audit_failure(attempt, FailureReason.INVALID_REQUEST, "Invalid JSON format")
                raise GatewayError(400, INVALID_REQUEST_ERROR, "Bad Request: Invalid JSON format.")
        else:
            data = body

        try:
            return ChatCompletionRequest.model_validate(data)
        except ValidationError as e:
            if isinstance(data, dict) and isinstance(data.get("model"), str) and data["model"]:
                attempt.model_id = data["model"]
            self._audit_failure(attempt, FailureReason.INVALID_REQUEST, "Invalid request format")
            raise GatewayError(
                400,
                INVALID_REQUEST_ERROR,
                "Bad Request",
                details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            )

    def _record_provider_failure(
        self,
        key: ApiKey,
        billing_user_id: str,
        model: ModelConfig,
        error: GatewayError,
    ) -> None:
        self.ledger.append(UsageRecord(
            timestamp=datetime.now(),
            key_id=key.id,
            project_id=key.project_id,
            billing_user_id=billing_user_id,
            provider=model.provider_id,
            model=model.model_identifier,
            tokens_input=0,
            tokens_output=0,
            provider_cost=ZERO,
            markup_amount=ZERO,
            billed_cost=ZERO,
            success=False,
            request_id=f"mock-error-{secrets.token_urlsafe(16)}",
            endpoint=ENDPOINT,
            latency_ms=self.simulator.failure_latency_ms(),
            metadata={
                "error": error.error_type,
                "errorMessage": error.message,
                "keyType": "project" if key.project_id else "user",
            },
        ))

    def _complete(
        self,
        attempt: _Attempt,
        key: ApiKey,
        billing_user_id: str,
        model: ModelConfig,
        request: ChatCompletionRequest,
    ) -> GatewayResponse:
        prompt = request.messages[-1].content
        completion = self.simulator.complete(prompt, model)
        billed = compute_billed_cost(completion.provider_cost, self.markup_percent)

        self.ledger.append(UsageRecord(
            timestamp=datetime.now(),
            key_id=key.id,
            project_id=key.project_id,
            billing_user_id=billing_user_id,
            provider=model.provider_id,
            model=model.model_identifier,
            tokens_input=completion.usage.prompt_tokens,
            tokens_output=completion.usage.completion_tokens,
            provider_cost=billed.provider_cost,
            markup_amount=billed.markup_amount,
            billed_cost=billed.billed_cost,
            success=True,
            cache_hit=completion.cache_hit,
            request_id=f"mock-{secrets.token_urlsafe(16)}",
            endpoint=ENDPOINT,
            latency_ms=completion.latency_ms,
            metadata={
                "markupPercentApplied": str(self.markup_percent),
                "prompt_start": prompt[:50] + ("..." if len(prompt) > 50 else ""),
                "keyType": "project" if key.project_id else "user",
            },
        ))

        self.audit.log_completion_success(
            billing_user_id,
            key.id,
            {
                "model": model.model_identifier,
                "provider": model.provider_id,
                "tokensInput": completion.usage.prompt_tokens,
                "tokensOutput": completion.usage.completion_tokens,
                "cost": float(billed.billed_cost),
                "latency": int((time.monotonic() - attempt.started) * 1000),
                "requestId": attempt.request_id,
            },
            attempt.context,
        )
        attempt.audited = True

        return GatewayResponse(200, {
            "id": f"chatcmpl-mock-{secrets.token_urlsafe(16)}",
            "object": "chat.completion",
            "created": int(time.time()),
            "model": model.model_identifier,
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": completion.content},
                "finish_reason": "stop",
            }],
            "usage": {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
                "total_tokens": completion.usage.total_tokens,
            },
        })

    def _audit_failure(self, attempt: _Attempt, reason: FailureReason, message: str) -> None:
        self.audit.log_completion_failure(
            attempt.audit_user_id,
            attempt.key.id,
            reason,
            {
                "model": attempt.model_id,
                "provider": attempt.provider,
                "error": message,
                "requestId": attempt.request_id,
            },
            attempt.context,
        )
        attempt.audited = True

    def _audit_blocked(
        self,
        attempt: _Attempt,
        user_id: Optional[str],
        reason: BlockReason,
        api_key_id: Optional[str],
    ) -> None:
        details: Dict[str, Any] = {"endpoint": ENDPOINT, "requestId": attempt.request_id}
        if api_key_id is not None:
            details["apiKeyId"] = api_key_id
        self.audit.log_api_request_blocked(user_id, reason, details, attempt.context)
        attempt.audited = True
