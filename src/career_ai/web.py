"""FastAPI web interface for the generation pipeline."""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from career_ai.config import AppConfig
from career_ai.errors import (
    BackendUnavailableError,
    ErrorKind,
    GenerationError,
    InvalidRequestError,
    PipelineError,
)
from career_ai.models import ArtifactFilters, GenerationKind
from career_ai.orchestrator import Orchestrator, build_orchestrator

logger = logging.getLogger(__name__)

_config = AppConfig()

DISCONNECT_POLL_S = 0.5

# HTTP status per error kind. 499 is the conventional "client closed request".
STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.OWNERSHIP_MISMATCH: 403,
    ErrorKind.BACKEND_UNAVAILABLE: 503,
    ErrorKind.PROVIDER_ERROR: 502,
    ErrorKind.MALFORMED_OUTPUT: 502,
    ErrorKind.PERSISTENCE_ERROR: 500,
    ErrorKind.CANCELLED: 499,
}


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Wire the orchestrator on startup."""
    orchestrator = build_orchestrator(_config)
    application.state.orchestrator = orchestrator
    logger.info(
        "Orchestrator ready (provider=%s, configured=%s)",
        orchestrator.provider_name,
        orchestrator.is_configured,
    )
    yield


app = FastAPI(
    title="Career AI",
    lifespan=lifespan,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)

router = APIRouter(prefix="/api/v1")


def error_response(error: GenerationError, content: dict | None = None) -> JSONResponse:
    """Render a GenerationError as ``{"error": {...}}`` with its status code."""
    body: dict[str, Any] = {"error": error.to_dict()}
    if content is not None:
        body["content"] = content
    headers = None
    if error.retry_after is not None:
        headers = {"Retry-After": str(error.retry_after)}
    return JSONResponse(
        status_code=STATUS_CODES[error.kind], content=body, headers=headers
    )


async def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return error_response(exc.to_error())


app.add_exception_handler(PipelineError, _pipeline_error_handler)


def get_orchestrator(request: Request) -> Orchestrator:
    """FastAPI dependency — return the orchestrator from app state."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise BackendUnavailableError("service is starting up")
    return orchestrator


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """FastAPI dependency — the verified caller id set by the auth proxy."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


class GenerateRequest(BaseModel):
    job_id: int | str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class ArtifactSummaryResponse(BaseModel):
    id: str
    kind: str
    job_id: int | None = None
    title: str | None = None
    model_id: str | None = None
    created_at: str
    preview: str | None = None


class GenerateResponse(BaseModel):
    artifact: ArtifactSummaryResponse
    content: dict[str, Any]
    metadata: dict[str, Any]


class ArtifactResponse(BaseModel):
    id: str
    user_id: str
    job_id: int | None = None
    kind: str
    title: str | None = None
    prompt_excerpt: str | None = None
    model_id: str | None = None
    content: dict[str, Any]
    metadata: dict[str, Any]
    created_at: str


class ArtifactListResponse(BaseModel):
    items: list[ArtifactSummaryResponse]


class GenerationCounts(BaseModel):
    total: int = 0
    success: int = 0
    fail: int = 0


class HealthResponse(BaseModel):
    status: str
    provider_mode: str
    configured: bool
    generations: GenerationCounts


@router.get("/health", response_model=HealthResponse)
async def api_health(request: Request):
    orchestrator = getattr(request.app.state, "orchestrator", None)
    configured = bool(orchestrator and orchestrator.is_configured)
    counts = orchestrator.stats.snapshot() if orchestrator is not None else {}
    return HealthResponse(
        status="healthy" if configured else "degraded",
        provider_mode=_config.provider.mode,
        configured=configured,
        generations=GenerationCounts(**counts),
    )


async def watch_disconnect(request: Request, cancel_event: threading.Event) -> None:
    """Set *cancel_event* once the client goes away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling generation")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_S)


@router.post("/generate/{kind}", response_model=GenerateResponse, status_code=201)
async def api_generate(
    kind: str,
    body: GenerateRequest,
    request: Request,
    user_id: str = Depends(get_user_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    cancel_event = threading.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel_event))
    try:
        outcome = await run_in_threadpool(
            orchestrator.request_generation,
            kind,
            user_id,
            body.job_id,
            body.options,
            cancel_event=cancel_event,
        )
    finally:
        watcher.cancel()

    if not outcome.ok:
        return error_response(outcome.error, outcome.content)

    return GenerateResponse(
        artifact=ArtifactSummaryResponse(**outcome.summary.to_dict()),
        content=outcome.artifact.content,
        metadata=outcome.artifact.metadata,
    )


@router.get("/artifacts", response_model=ArtifactListResponse)
def api_list_artifacts(
    kind: str | None = None,
    job_id: int | None = None,
    q: str | None = None,
    limit: int = 20,
    offset: int = 0,
    user_id: str = Depends(get_user_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    parsed_kind = None
    if kind:
        parsed_kind = GenerationKind.parse(kind)
        if parsed_kind is None:
            raise InvalidRequestError(f"unsupported generation kind: {kind!r}")

    filters = ArtifactFilters(
        kind=parsed_kind, job_id=job_id, query=q, limit=limit, offset=offset
    )
    items = orchestrator.list_artifacts(user_id, filters)
    return ArtifactListResponse(
        items=[ArtifactSummaryResponse(**item.to_dict()) for item in items]
    )


@router.get("/artifacts/{artifact_id}", response_model=ArtifactResponse)
def api_get_artifact(
    artifact_id: str,
    user_id: str = Depends(get_user_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    artifact = orchestrator.get_artifact(user_id, artifact_id)
    return ArtifactResponse(**artifact.to_dict())


app.include_router(router)
