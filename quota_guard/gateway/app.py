"""
HTTP surface of the gateway.
"""

import random
import sqlite3
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from quota_guard.audit.cache import TTLCache
from quota_guard.audit.geo import GeoLocator
from quota_guard.audit.logger import AuditLogger, RequestContext
from quota_guard.config.loader import GatewayConfig
from quota_guard.core.authorization import check_key_authorization
from quota_guard.core.quota import get_key_usage_status
from quota_guard.core.spending import check_project_limits
from quota_guard.storage.alerts import AlertRepository
from quota_guard.storage.audit import AuditRepository
from quota_guard.storage.keys import ApiKeyRepository
from quota_guard.storage.projects import ProjectRepository, UserRepository
from quota_guard.storage.repository import UsageRepository, initialize_schema

from .admission import AdmissionGate
from .errors import AUTHENTICATION_ERROR, INVALID_REQUEST_ERROR, GatewayError, internal_error
from .simulator import ProviderSimulator

logger = structlog.get_logger(__name__)


@dataclass
class GatewayServices:
    """Repositories and collaborators shared by the HTTP handlers."""
    keys: ApiKeyRepository
    projects: ProjectRepository
    users: UserRepository
    ledger: UsageRepository
    alerts: AlertRepository
    audit: AuditLogger
    gate: AdmissionGate

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        rng: Optional[random.Random] = None,
    ) -> "GatewayServices":
        db_path = config.database.path
        initialize_schema(db_path)

        geolocator = None
        if config.geolocation.enabled:
            geolocator = GeoLocator(
                TTLCache(ttl_seconds=config.geolocation.cache_ttl_hours * 3600),
                token=config.geolocation.ipinfo_token,
            )

        keys = ApiKeyRepository(db_path)
        projects = ProjectRepository(db_path)
        ledger = UsageRepository(db_path)
        audit = AuditLogger(AuditRepository(db_path), geolocator)
        simulator = ProviderSimulator(
            failure_rate=config.simulation.provider_failure_rate,
            cache_hit_rate=config.simulation.cache_hit_rate,
            rng=rng,
        )
        return cls(
            keys=keys,
            projects=projects,
            users=UserRepository(db_path),
            ledger=ledger,
            alerts=AlertRepository(db_path),
            audit=audit,
            gate=AdmissionGate(
                keys,
                projects,
                ledger,
                audit,
                simulator,
                markup_percent=config.billing.markup_percent,
            ),
        )


def _context(request: Request) -> RequestContext:
    return RequestContext.from_headers(
        request.headers,
        method=request.method,
        peer=request.client.host if request.client else None,
    )


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise GatewayError(401, AUTHENTICATION_ERROR, "Unauthorized")
    return user_id


def create_app(
    config: Optional[GatewayConfig] = None,
    services: Optional[GatewayServices] = None,
) -> FastAPI:
    config = config or GatewayConfig()
    services = services or GatewayServices.from_config(config)

    app = FastAPI(title="Quota Guard")
    app.state.services = services

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(sqlite3.Error)
    async def storage_error_handler(request: Request, exc: sqlite3.Error):
        logger.error("storage_error", path=request.url.path, error=str(exc))
        error = internal_error()
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        body = await request.body()
        # The gate runs to completion in the worker thread even if the
        # client disconnects, so billed calls are always recorded.
        response = await run_in_threadpool(
            services.gate.handle,
            request.headers.get("authorization"),
            body,
            _context(request),
        )
        return JSONResponse(status_code=response.status_code, content=response.payload)

    @app.get("/v1/keys/{key_id}/usage")
    def key_usage(key_id: str, x_user_id: Optional[str] = Header(None)):
        user_id = _require_user(x_user_id)
        if not check_key_authorization(key_id, user_id, services.keys, services.projects):
            raise GatewayError(404, INVALID_REQUEST_ERROR, "API Key not found")
        return get_key_usage_status(key_id, services.keys, services.ledger).to_dict()

    @app.get("/v1/projects/limits")
    def project_limits(request: Request, x_user_id: Optional[str] = Header(None)):
        user_id = _require_user(x_user_id)
        result = check_project_limits(
            user_id,
            services.projects,
            services.ledger,
            services.alerts,
            services.audit,
            context=_context(request),
        )
        return result.to_dict()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
