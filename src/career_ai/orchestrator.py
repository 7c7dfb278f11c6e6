"""Orchestrator — drives one generation request through the pipeline.

Validate → rate-check → aggregate → prompt → generate → normalize → persist.
Every request ends in an explicit :class:`GenerationOutcome`; failures carry
a structured :class:`GenerationError` and never a stack trace.
"""

import dataclasses
import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from career_ai.aggregator import aggregate
from career_ai.artifact_store import ArtifactStore, get_artifact_store, summarize
from career_ai.config import AppConfig
from career_ai.errors import (
    BackendUnavailableError,
    GenerationCancelledError,
    GenerationError,
    InvalidRequestError,
    MalformedOutputError,
    PersistenceError,
    PipelineError,
    ProviderError,
    RateLimitedError,
)
from career_ai.models import (
    AggregatedContext,
    Artifact,
    ArtifactDraft,
    ArtifactFilters,
    ArtifactSummary,
    GenerationKind,
    GenerationRequest,
    GenerationSettings,
    PromptSpec,
    ProviderResult,
)
from career_ai.normalizer import normalize
from career_ai.prompts import build_prompt, truncate_text
from career_ai.provider import ProviderClient, get_provider
from career_ai.rate_limiter import RateLimiter, SlidingWindowRateLimiter
from career_ai.record_store import RecordStore, load_record_store

logger = logging.getLogger(__name__)

PROMPT_EXCERPT_CHARS = 2000
PROMPT_PREVIEW_CHARS = 400
TITLE_MAX = 200


class Stage(str, Enum):
    VALIDATING = "validating"
    RATE_CHECKING = "rate_checking"
    AGGREGATING = "aggregating"
    PROMPTING = "prompting"
    GENERATING = "generating"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


# Error raised when a stage fails with something outside the taxonomy.
_UNEXPECTED: dict[Stage, tuple[type[PipelineError], str]] = {
    Stage.VALIDATING: (InvalidRequestError, "invalid request"),
    Stage.RATE_CHECKING: (BackendUnavailableError, "rate limiter unavailable"),
    Stage.AGGREGATING: (BackendUnavailableError, "data store unavailable"),
    Stage.PROMPTING: (InvalidRequestError, "prompt could not be built"),
    Stage.GENERATING: (ProviderError, "generation failed"),
    Stage.NORMALIZING: (MalformedOutputError, "output could not be normalized"),
    Stage.PERSISTING: (PersistenceError, "artifact could not be saved"),
}

_TITLES = {
    GenerationKind.RESUME: "AI Resume for {}",
    GenerationKind.COVER_LETTER: "Cover Letter for {}",
    GenerationKind.SKILLS_OPTIMIZATION: "Skills Optimization for {}",
    GenerationKind.EXPERIENCE_TAILORING: "Experience Tailoring for {}",
    GenerationKind.JOB_MATCH: "Job Match for {}",
}


@dataclass(frozen=True)
class GenerationOutcome:
    """Terminal result of one request.

    ``stage`` is ``DONE`` on success and ``FAILED`` otherwise, with
    ``failed_stage`` naming where it stopped. ``content`` is set on success
    and also when only persistence failed, so the paid-for output survives.
    """

    ok: bool
    stage: Stage
    artifact: Artifact | None = None
    summary: ArtifactSummary | None = None
    error: GenerationError | None = None
    content: dict | None = None
    failed_stage: Stage | None = None
    latency_s: float = 0.0


class GenerationStats:
    """Process-wide generation counters, safe to bump from worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._success = 0
        self._fail = 0

    def started(self) -> None:
        with self._lock:
            self._total += 1

    def finished(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self._success += 1
            else:
                self._fail += 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {"total": self._total, "success": self._success, "fail": self._fail}


def _job_id(value: object) -> int:
    if isinstance(value, bool):
        raise InvalidRequestError("job_id must be a positive integer")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise InvalidRequestError("job_id must be a positive integer")
    return value


def make_title(kind: GenerationKind, job: dict) -> str:
    """Human-readable artifact title derived from the target job."""
    if kind is GenerationKind.COMPANY_RESEARCH:
        company = job.get("company_name") or job.get("company") or "Target Company"
        return truncate_text(f"Company Research: {company}", TITLE_MAX)
    role = job.get("job_title") or job.get("title") or "Target Role"
    return truncate_text(_TITLES[kind].format(role), TITLE_MAX)


class Orchestrator:
    """The only component the request boundary talks to.

    Args:
        records: Read interface over profiles, jobs, and collections, or
            None when no store is configured.
        artifacts: Where finished artifacts are persisted.
        provider: Generation backend.
        rate_limiter: Per-user admission control.
        config: Application configuration (provider and prompt settings).
        clock: Monotonic clock used for latency measurement.
    """

    def __init__(
        self,
        records: RecordStore | None,
        artifacts: ArtifactStore,
        provider: ProviderClient,
        rate_limiter: RateLimiter,
        config: AppConfig | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._records = records
        self._artifacts = artifacts
        self._provider = provider
        self._limiter = rate_limiter
        self._config = config or AppConfig()
        self._clock = clock
        self.stats = GenerationStats()

    @property
    def is_configured(self) -> bool:
        return self._records is not None

    @property
    def provider_name(self) -> str:
        return getattr(self._provider, "name", type(self._provider).__name__)

    # ---------- Generation ----------

    def request_generation(
        self,
        kind: object,
        user_id: object,
        job_id: object,
        options: object = None,
        cancel_event: threading.Event | None = None,
    ) -> GenerationOutcome:
        """Run one generation request to a terminal outcome.

        Args:
            kind: Generation kind (enum member or its string value).
            user_id: Verified requesting user.
            job_id: Target job id, a positive int or digit string.
            options: Optional mapping of generation options.
            cancel_event: Set by the caller to abandon the request.

        Returns:
            A GenerationOutcome. This method does not raise for pipeline
            failures.
        """
        self.stats.started()
        outcome = self._run(kind, user_id, job_id, options, cancel_event)
        self.stats.finished(outcome.ok)
        return outcome

    def _run(
        self,
        kind: object,
        user_id: object,
        job_id: object,
        options: object,
        cancel_event: threading.Event | None,
    ) -> GenerationOutcome:
        started = self._clock()
        stage = Stage.VALIDATING
        content: dict | None = None
        try:
            request = self._validate(kind, user_id, job_id, options)
            logger.info(
                "Generation started: kind=%s user=%s job=%s",
                request.kind.value,
                request.user_id,
                request.job_id,
            )

            stage = self._enter(Stage.RATE_CHECKING, request)
            self._admit(request)

            stage = self._enter(Stage.AGGREGATING, request)
            context = self._aggregate(request)

            stage = self._enter(Stage.PROMPTING, request)
            prompt = build_prompt(
                request.kind, context, request.options, self._config.prompt
            )

            stage = self._enter(Stage.GENERATING, request)
            self._check_cancelled(cancel_event, request, discarding=False)
            settings = self._settings(request)
            result = self._provider.generate(request.kind, prompt.text, settings)
            self._check_cancelled(cancel_event, request, discarding=True)

            stage = self._enter(Stage.NORMALIZING, request)
            content = self._normalize(request, result)

            stage = self._enter(Stage.PERSISTING, request)
            draft = self._draft(request, context, prompt, result, settings, content, started)
            artifact = self._artifacts.persist(draft)
        except PipelineError as exc:
            return self._fail(stage, exc, started, content)
        except Exception:
            logger.exception("Unexpected failure while %s", stage.value)
            error_cls, message = _UNEXPECTED[stage]
            return self._fail(stage, error_cls(message), started, content)

        latency = self._clock() - started
        logger.info(
            "Generation done: kind=%s user=%s artifact=%s in %.2fs",
            request.kind.value,
            request.user_id,
            artifact.id,
            latency,
        )
        return GenerationOutcome(
            ok=True,
            stage=Stage.DONE,
            artifact=artifact,
            summary=summarize(artifact),
            content=artifact.content,
            latency_s=latency,
        )

    def _enter(self, stage: Stage, request: GenerationRequest) -> Stage:
        logger.debug("[%s/%s] -> %s", request.user_id, request.kind.value, stage.value)
        return stage

    def _validate(
        self, kind: object, user_id: object, job_id: object, options: object
    ) -> GenerationRequest:
        parsed = GenerationKind.parse(kind)
        if parsed is None:
            raise InvalidRequestError(f"unsupported generation kind: {kind!r}")
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidRequestError("user_id is required")
        if options is None:
            options = {}
        if not isinstance(options, Mapping):
            raise InvalidRequestError("options must be an object")
        return GenerationRequest(
            user_id=user_id.strip(),
            job_id=_job_id(job_id),
            kind=parsed,
            options=dict(options),
        )

    def _admit(self, request: GenerationRequest) -> None:
        admission = self._limiter.admit(request.user_id)
        if not admission.allowed:
            retry_after = admission.retry_after_seconds or 1
            raise RateLimitedError(
                f"rate limit exceeded, retry in {retry_after}s", retry_after
            )

    def _aggregate(self, request: GenerationRequest) -> AggregatedContext:
        if self._records is None:
            raise BackendUnavailableError("record store is not configured")
        context = aggregate(self._records, request.kind, request.user_id, request.job_id)

        if request.kind is GenerationKind.COVER_LETTER and request.options.get(
            "use_company_research"
        ):
            research = self._latest_research(request)
            if research is None:
                context = dataclasses.replace(
                    context, degraded=(*context.degraded, "company_research")
                )
            else:
                context = dataclasses.replace(context, company_research=research)
        return context

    def _latest_research(self, request: GenerationRequest) -> dict | None:
        """Newest company-research content the user owns for this job."""
        filters = ArtifactFilters(
            kind=GenerationKind.COMPANY_RESEARCH, job_id=request.job_id, limit=1
        )
        try:
            found = self._artifacts.list(request.user_id, filters)
            if not found:
                return None
            return self._artifacts.get(request.user_id, found[0].id).content
        except PipelineError as exc:
            logger.warning("Company research lookup failed: %s", exc.message)
            return None

    def _check_cancelled(
        self,
        cancel_event: threading.Event | None,
        request: GenerationRequest,
        discarding: bool,
    ) -> None:
        if cancel_event is None or not cancel_event.is_set():
            return
        if discarding:
            logger.info(
                "Request cancelled during generation; discarding %s result for %s",
                request.kind.value,
                request.user_id,
            )
        raise GenerationCancelledError("request was cancelled")

    def _settings(self, request: GenerationRequest) -> GenerationSettings:
        cfg = self._config.provider
        model = cfg.model_for(request.kind.value)
        requested = request.options.get("model")
        if requested:
            if isinstance(requested, str) and requested in cfg.allowed_models:
                model = requested
            else:
                logger.info("Ignoring model override %r (not allow-listed)", requested)
        return GenerationSettings(
            model=model, temperature=cfg.temperature, max_tokens=cfg.max_tokens
        )

    def _normalize(self, request: GenerationRequest, result: ProviderResult) -> dict:
        try:
            return normalize(request.kind, result)
        except MalformedOutputError as exc:
            logger.warning(
                "Malformed %s output for %s: %r",
                request.kind.value,
                request.user_id,
                exc.preview,
            )
            raise

    def _draft(
        self,
        request: GenerationRequest,
        context: AggregatedContext,
        prompt: PromptSpec,
        result: ProviderResult,
        settings: GenerationSettings,
        content: dict,
        started: float,
    ) -> ArtifactDraft:
        model = result.meta.get("model") or settings.model
        metadata = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "provider": result.meta.get("provider") or self.provider_name,
            "model": model,
            "tokens": result.tokens,
            "prompt_preview": prompt.text[:PROMPT_PREVIEW_CHARS],
            "template_version": prompt.template_version,
            "truncated": prompt.truncated,
            "attempts": result.meta.get("attempts", 1),
            "latency_s": round(self._clock() - started, 3),
        }
        for key in ("variant", "tone"):
            value = request.options.get(key)
            if isinstance(value, (str, int, float)) and not isinstance(value, bool):
                metadata[key] = value
        if context.degraded:
            metadata["degraded"] = list(context.degraded)

        return ArtifactDraft(
            user_id=request.user_id,
            job_id=request.job_id,
            kind=request.kind,
            title=make_title(request.kind, context.job),
            prompt_excerpt=prompt.text[:PROMPT_EXCERPT_CHARS],
            model_id=model,
            content=content,
            metadata=metadata,
        )

    def _fail(
        self,
        stage: Stage,
        exc: PipelineError,
        started: float,
        content: dict | None,
    ) -> GenerationOutcome:
        error = exc.to_error()
        log = logger.info if isinstance(exc, RateLimitedError) else logger.warning
        log("Generation failed while %s: %s (%s)", stage.value, error.message, error.kind.value)
        return GenerationOutcome(
            ok=False,
            stage=Stage.FAILED,
            error=error,
            content=content if isinstance(exc, PersistenceError) else None,
            failed_stage=stage,
            latency_s=self._clock() - started,
        )

    # ---------- Reads ----------

    def list_artifacts(
        self, user_id: str, filters: ArtifactFilters | None = None
    ) -> list[ArtifactSummary]:
        """List the user's artifacts, newest first.

        Raises:
            PipelineError: ``InvalidRequestError`` for a missing user id,
                ``BackendUnavailableError`` when the store fails.
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidRequestError("user_id is required")
        try:
            return self._artifacts.list(user_id, filters or ArtifactFilters())
        except PipelineError:
            raise
        except Exception as exc:
            logger.exception("Artifact listing failed for %s", user_id)
            raise BackendUnavailableError("artifact store unavailable") from exc

    def get_artifact(self, user_id: str, artifact_id: str) -> Artifact:
        """Fetch one artifact owned by *user_id*.

        Raises:
            PipelineError: ``NotFoundError`` when the id is unknown or owned by
                someone else, ``BackendUnavailableError`` when the store fails.
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidRequestError("user_id is required")
        try:
            return self._artifacts.get(user_id, artifact_id)
        except PipelineError:
            raise
        except Exception as exc:
            logger.exception("Artifact lookup failed for %s", artifact_id)
            raise BackendUnavailableError("artifact store unavailable") from exc


def build_orchestrator(config: AppConfig | None = None) -> Orchestrator:
    """Wire an orchestrator from configuration.

    A missing or unreadable ``data_file`` leaves the orchestrator
    unconfigured: it still constructs, reports ``is_configured == False``,
    and fails generation requests with ``backend_unavailable``.
    """
    cfg = config or AppConfig()
    try:
        records = load_record_store(cfg.data_file)
    except (OSError, ValueError) as exc:
        logger.error("Could not load record store from %s: %s", cfg.data_file, exc)
        records = None
    if records is None:
        logger.warning("No record store configured; generation is unavailable")
    return Orchestrator(
        records=records,
        artifacts=get_artifact_store(cfg.store),
        provider=get_provider(cfg.provider),
        rate_limiter=SlidingWindowRateLimiter.from_config(cfg.rate_limit),
        config=cfg,
    )
