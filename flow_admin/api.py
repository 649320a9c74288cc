"""FastAPI surface for the flow administration service.

Routes:

  GET    /flows                     - active flow set
  POST   /flows                     - deploy (or reload) the flow set
  POST   /flow                      - add a flow
  GET    /flow/{id}                 - get a flow ("global" for config nodes)
  PUT    /flow/{id}                 - replace a flow
  DELETE /flow/{id}                 - delete a flow
  GET    /credentials/{type}/{id}   - redacted node credentials
  GET    /health                    - liveness + current revision

API versions (``Flow-API-Version`` header):

  v1 (default) - GET /flows returns the bare node array; POST /flows takes the
                 array and answers 204.
  v2           - GET /flows returns ``{rev, flows}``; POST /flows takes
                 ``{flows, rev?}`` and answers ``{rev}``. Supplying ``rev``
                 makes the deploy conditional: a stale rev gets 409.

Deployment type comes from the ``Flow-Deployment-Type`` header (default
``full``). ``reload`` ignores the request body.
"""

import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from flow_admin.audit import LoggingAuditSink, PostgresAuditLog
from flow_admin.config import Settings, load_env
from flow_admin.errors import (
    FlowApiError,
    FlowStoreError,
    ValidationFailed,
    is_not_found,
    store_error_code,
)
from flow_admin.models import DeploymentRequest, DeploymentType, Flow, FlowSet
from flow_admin.service import FlowAdminService
from flow_admin.store import FlowStore, MemoryFlowStore

logger = logging.getLogger("flow_admin.api")

API_VERSION_HEADER = "Flow-API-Version"
DEPLOYMENT_TYPE_HEADER = "Flow-Deployment-Type"
_API_VERSIONS = ("v1", "v2")

# ---------------------------------------------------------------------------
# Auth (optional, enabled when FLOW_ADMIN_API_KEY is set)
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def _current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> str | None:
    """Verify the Bearer token and return the caller identity for audit.

    Open access (identity None) when no API key is configured.
    """
    api_key = request.app.state.settings.api_key
    if not api_key:
        return None
    if not credentials or credentials.credentials != api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return "api-key"


def _service(request: Request) -> FlowAdminService:
    return request.app.state.service


def _api_version(value: str | None) -> str:
    version = (value or "v1").lower()
    if version not in _API_VERSIONS:
        raise ValidationFailed(f"Unsupported API version: {value}", code="invalid_api_version")
    return version


def _deployment_type(value: str | None) -> DeploymentType:
    try:
        return DeploymentType((value or "full").lower())
    except ValueError:
        raise ValidationFailed(
            f"Unsupported deployment type: {value}", code="invalid_deployment_type"
        ) from None


def _flow_body(body: Any) -> Flow:
    if not isinstance(body, dict):
        raise ValidationFailed("Expected a flow object", code="invalid_request")
    try:
        return Flow.model_validate(body)
    except ValidationError as e:
        raise ValidationFailed(str(e), code="invalid_request") from e


@contextmanager
def _audited(service: FlowAdminService, event: str, user: str | None, **fields: Any):
    """Audit any FlowApiError raised while reading the request, then re-raise it."""
    try:
        yield
    except FlowApiError as e:
        service.reject(event, e, user, **fields)
        raise


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address)
_WRITE_LIMIT = Settings.from_env().write_rate_limit

router = APIRouter()


@router.get("/flows", tags=["flows"])
def get_flows(
    service: FlowAdminService = Depends(_service),
    user: str | None = Depends(_current_user),
    api_version: str | None = Header(None, alias=API_VERSION_HEADER),
) -> Any:
    with _audited(service, "flows.get", user):
        version = _api_version(api_version)
    flow_set = service.get_flows(user=user)
    if version == "v1":
        return flow_set.flows
    return flow_set.model_dump()


@router.post("/flows", tags=["flows"])
@limiter.limit(_WRITE_LIMIT)
async def set_flows(
    request: Request,
    body: Any = Body(None),
    service: FlowAdminService = Depends(_service),
    user: str | None = Depends(_current_user),
    api_version: str | None = Header(None, alias=API_VERSION_HEADER),
    deployment_type: str | None = Header(None, alias=DEPLOYMENT_TYPE_HEADER),
) -> Any:
    flow_set: FlowSet | None = None
    with _audited(service, "flows.set", user, type=(deployment_type or "full").lower()):
        version = _api_version(api_version)
        dtype = _deployment_type(deployment_type)
        if dtype is not DeploymentType.RELOAD:
            try:
                if version == "v1":
                    if not isinstance(body, list):
                        raise ValidationFailed("Expected an array of node configs", code="invalid_request")
                    flow_set = FlowSet(flows=body)
                else:
                    if not isinstance(body, dict):
                        raise ValidationFailed("Expected {flows, rev}", code="invalid_request")
                    flow_set = FlowSet.model_validate(body)
            except ValidationError as e:
                raise ValidationFailed(str(e), code="invalid_request") from e

    result = await service.set_flows(
        DeploymentRequest(deployment_type=dtype, flows=flow_set), user=user
    )
    if version == "v1":
        return Response(status_code=204)
    return result.model_dump()


@router.post("/flow", tags=["flow"])
@limiter.limit(_WRITE_LIMIT)
async def add_flow(
    request: Request,
    body: Any = Body(None),
    service: FlowAdminService = Depends(_service),
    user: str | None = Depends(_current_user),
) -> dict:
    with _audited(service, "flow.add", user):
        flow = _flow_body(body)
    flow_id = await service.add_flow(flow, user=user)
    return {"id": flow_id}


@router.get("/flow/{flow_id}", tags=["flow"])
def get_flow(
    flow_id: str,
    service: FlowAdminService = Depends(_service),
    user: str | None = Depends(_current_user),
) -> dict:
    return service.get_flow(flow_id, user=user).model_dump(exclude_none=True)


@router.put("/flow/{flow_id}", tags=["flow"])
@limiter.limit(_WRITE_LIMIT)
async def update_flow(
    request: Request,
    flow_id: str,
    body: Any = Body(None),
    service: FlowAdminService = Depends(_service),
    user: str | None = Depends(_current_user),
) -> dict:
    with _audited(service, "flow.update", user, id=flow_id):
        flow = _flow_body(body)
    return {"id": await service.update_flow(flow_id, flow, user=user)}


@router.delete("/flow/{flow_id}", tags=["flow"])
@limiter.limit(_WRITE_LIMIT)
async def delete_flow(
    request: Request,
    flow_id: str,
    service: FlowAdminService = Depends(_service),
    user: str | None = Depends(_current_user),
) -> Response:
    await service.delete_flow(flow_id, user=user)
    return Response(status_code=204)


@router.get("/credentials/{node_type}/{node_id}", tags=["credentials"])
def get_node_credentials(
    node_type: str,
    node_id: str,
    service: FlowAdminService = Depends(_service),
    user: str | None = Depends(_current_user),
) -> dict:
    return service.get_node_credentials(node_type, node_id, user=user)


@router.get("/health", tags=["system"])
def health(service: FlowAdminService = Depends(_service)) -> dict:
    return {"api": "ok", "rev": service.store.get_flows().rev}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


async def _flow_api_error_handler(request: Request, exc: FlowApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def _flow_store_error_handler(request: Request, exc: FlowStoreError) -> JSONResponse:
    """Store rejections that reach the HTTP layer unchanged (deploy and reload)."""
    if is_not_found(exc):
        return JSONResponse(status_code=404, content={"code": "not_found", "message": str(exc)})
    return JSONResponse(
        status_code=400, content={"code": store_error_code(exc), "message": str(exc)}
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    service: FlowAdminService | None = getattr(request.app.state, "service", None)
    if service is not None:
        service.reject(
            "request.invalid",
            ValidationFailed(code="invalid_request"),
            method=request.method,
            path=request.url.path,
        )
    return JSONResponse(
        status_code=400, content={"code": "invalid_request", "message": str(exc.errors())}
    )


def create_app(settings: Settings | None = None, store: FlowStore | None = None) -> FastAPI:
    """Build the FastAPI app.

    When ``store`` is None, a MemoryFlowStore is built from the settings'
    files at startup, auditing to Postgres when ``audit_dsn`` is set and to
    the log otherwise.
    """
    settings = settings or load_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        audit_log: PostgresAuditLog | None = None
        active_store = store
        if active_store is None:
            if settings.audit_dsn:
                audit_log = PostgresAuditLog(settings.audit_dsn)
                await audit_log.setup()
            active_store = MemoryFlowStore.from_files(
                flows_file=settings.flows_file,
                credentials_file=settings.credentials_file,
                credential_definitions_file=settings.credential_definitions_file,
                audit_sink=audit_log or LoggingAuditSink(),
            )
        app.state.service = FlowAdminService(active_store)
        logger.info(
            "Starting flow admin API | flows: %s | rev: %s | audit: %s",
            settings.flows_file or "(memory)",
            active_store.get_flows().rev,
            "postgres" if audit_log else "log",
        )

        yield

        if audit_log is not None:
            await audit_log.close()
        logger.info("Shutting down flow admin API")

    app = FastAPI(
        title="Flow Administration API",
        description=(
            "Read, deploy and edit flow configurations with optimistic "
            "concurrency on the flow set revision."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(FlowApiError, _flow_api_error_handler)
    app.add_exception_handler(FlowStoreError, _flow_store_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Entry point (for uvicorn programmatic launch)
# ---------------------------------------------------------------------------


def serve(host: str = "127.0.0.1", port: int = 1880, reload: bool = False) -> None:
    """Launch the FastAPI server via uvicorn."""
    import uvicorn

    settings = load_env()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(
        "flow_admin.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    serve()
