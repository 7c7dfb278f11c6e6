"""Provider clients — turn a prompt into raw content.

The mock provider never touches the network. The live provider talks to
Ollama and retries transient failures according to a :class:`RetryPolicy`.
Callers only ever see :class:`ProviderResult` or :class:`ProviderError`.
"""

import json
import logging
import time
from typing import Callable, Protocol

import httpx
import ollama

from career_ai.config import ProviderConfig
from career_ai.errors import ProviderError
from career_ai.models import GenerationKind, GenerationSettings, ProviderResult
from career_ai.prompts import extract_context
from career_ai.retry import RetryExhaustedError, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a careful career-document assistant. You always answer with a "
    "single JSON object that follows the requested structure, and you never "
    "invent facts that are not in the supplied context."
)


class ProviderClient(Protocol):
    """Single logical "complete this prompt" operation."""

    name: str

    def generate(
        self, kind: GenerationKind, prompt: str, options: GenerationSettings
    ) -> ProviderResult: ...


# ---------- Mock provider ----------


def _names(rows: list) -> list[str]:
    return [r["name"] for r in rows if isinstance(r, dict) and r.get("name")]


def _dates(row: dict) -> str:
    start = row.get("start_date") or ""
    end = row.get("end_date") or ("Present" if row.get("current") or start else "")
    return f"{start} – {end}".strip(" –")


def _mock_resume(ctx: dict) -> dict:
    candidate = ctx.get("candidate") or {}
    job = ctx.get("job") or {}
    skills = _names(candidate.get("skills") or [])
    target = job.get("title") or "target"

    experience = [
        {
            "employment_id": row.get("employment_id"),
            "role": row.get("role"),
            "company": row.get("company"),
            "dates": _dates(row),
            "bullets": [
                f"Delivered {target}-relevant results as {row.get('role') or 'team member'}."
            ],
        }
        for row in candidate.get("employment") or []
    ]
    education = [
        {
            "institution": row.get("institution"),
            "degree": row.get("degree"),
            "field": row.get("field"),
            "graduation_date": row.get("graduation_date"),
        }
        for row in candidate.get("education") or []
    ]
    sections: dict = {}
    if experience:
        sections["experience"] = experience
    if education:
        sections["education"] = education

    content = {
        "summary": (
            f"{candidate.get('title') or 'Candidate'} targeting the {target} role"
            f" at {job.get('company') or 'the company'}."
        ),
        "ordered_skills": skills,
        "emphasize_skills": skills[:3],
        "add_skills": [],
        "ats_keywords": skills[:5],
        "score": 75,
    }
    if sections:
        content["sections"] = sections
    return content


def _mock_cover_letter(ctx: dict) -> dict:
    candidate = ctx.get("candidate") or {}
    job = ctx.get("job") or {}
    role = job.get("title") or "the open role"
    company = job.get("company") or "your company"
    return {
        "sections": {
            "opening": f"I am excited to apply for {role} at {company}.",
            "body": [
                f"My background as {candidate.get('title') or 'a professional'} "
                "maps directly to the requirements of this role.",
            ],
            "closing": "Thank you for your consideration.",
        },
        "metadata": {"tone": "professional", "paragraph_count": 3},
    }


def _mock_skills_optimization(ctx: dict) -> dict:
    skills = _names((ctx.get("candidate") or {}).get("skills") or [])
    return {
        "emphasize": skills[:3],
        "add": [],
        "order": skills,
        "gaps": [],
        "score": 70,
    }


def _mock_experience_tailoring(ctx: dict) -> dict:
    employment = (ctx.get("candidate") or {}).get("employment") or []
    return {
        "roles": [
            {
                "employment_id": row.get("employment_id"),
                "role": row.get("role"),
                "company": row.get("company"),
                "tailored_bullets": [
                    f"Applied core {row.get('role') or 'role'} skills to the target job."
                ],
            }
            for row in employment
        ]
    }


def _mock_company_research(ctx: dict) -> dict:
    job = ctx.get("job") or {}
    company = job.get("company") or "Unknown company"
    return {
        "company_name": company,
        "description": f"{company} is hiring for {job.get('title') or 'a new role'}.",
        "products": [],
        "news": [],
    }


def _mock_job_match(ctx: dict) -> dict:
    skills = _names((ctx.get("candidate") or {}).get("skills") or [])
    return {
        "match_score": 70,
        "strengths": skills[:3],
        "skills_gaps": [],
        "recommendations": ["Quantify recent achievements."],
        "reasoning": "Mock analysis based on the supplied profile.",
    }


_MOCK_BUILDERS: dict[GenerationKind, Callable[[dict], dict]] = {
    GenerationKind.RESUME: _mock_resume,
    GenerationKind.COVER_LETTER: _mock_cover_letter,
    GenerationKind.SKILLS_OPTIMIZATION: _mock_skills_optimization,
    GenerationKind.EXPERIENCE_TAILORING: _mock_experience_tailoring,
    GenerationKind.COMPANY_RESEARCH: _mock_company_research,
    GenerationKind.JOB_MATCH: _mock_job_match,
}


class MockProvider:
    """Deterministic, cost-free provider for local development and tests.

    The canned result is shaped from the prompt's context block when there
    is one, so generated artifacts reflect the supplied profile.
    """

    name = "mock"

    def generate(
        self, kind: GenerationKind, prompt: str, options: GenerationSettings
    ) -> ProviderResult:
        ctx = extract_context(prompt) or {}
        content = _MOCK_BUILDERS[GenerationKind(kind)](ctx)
        return ProviderResult(
            text=json.dumps(content, sort_keys=True),
            json=content,
            tokens=len(prompt) // 4,
            meta={"provider": self.name, "model": options.model, "attempts": 1},
        )


# ---------- Live provider (Ollama) ----------


def is_transient_error(exc: BaseException) -> bool:
    """Timeouts, dropped connections, and 5xx responses are worth retrying."""
    if isinstance(exc, ollama.ResponseError):
        return exc.status_code >= 500
    return isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError))


def _field(response, key: str):
    try:
        return response[key]
    except (KeyError, TypeError, IndexError):
        return None


def _parse_json(text: str) -> dict | list | None:
    stripped = text.strip()
    if not stripped or stripped[0] not in "{[":
        return None
    try:
        return json.loads(stripped)
    except (json.JSONDecodeError, ValueError):
        return None


def _to_result(response, model: str, attempts: int, duration_s: float) -> ProviderResult:
    """Map an Ollama chat response onto a ProviderResult."""
    message = _field(response, "message")
    text = _field(message, "content") if message is not None else None
    text = text if isinstance(text, str) else ""

    counts = [_field(response, "prompt_eval_count"), _field(response, "eval_count")]
    counts = [c for c in counts if isinstance(c, int)]
    tokens = sum(counts) if counts else None

    return ProviderResult(
        text=text,
        json=_parse_json(text),
        tokens=tokens,
        meta={
            "provider": "ollama",
            "model": model,
            "attempts": attempts,
            "duration_s": round(duration_s, 3),
        },
    )


class OllamaProvider:
    """Live provider backed by an Ollama server.

    Each attempt is one ``chat`` call bounded by the client timeout.
    Transient failures are retried with exponential backoff; anything else
    fails immediately.
    """

    name = "ollama"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        policy: RetryPolicy | None = None,
        client: ollama.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        cfg = config or ProviderConfig()
        self._client = client or ollama.Client(host=cfg.host, timeout=cfg.timeout_s)
        self._policy = policy or RetryPolicy(
            max_retries=cfg.max_retries,
            base_delay=cfg.base_delay_s,
            max_delay=cfg.max_delay_s,
            jitter=cfg.jitter_s,
            is_retryable=is_transient_error,
        )
        self._sleep = sleep

    def generate(
        self, kind: GenerationKind, prompt: str, options: GenerationSettings
    ) -> ProviderResult:
        """Run one logical generation request.

        Raises:
            ProviderError: ``retryable=True`` when transient failures used up
                the retry budget, ``retryable=False`` for rejected requests.
        """

        def attempt():
            return self._client.chat(
                model=options.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                format="json",
                options={
                    "temperature": options.temperature,
                    "num_predict": options.max_tokens,
                },
            )

        started = time.perf_counter()
        try:
            response, attempts = call_with_retry(attempt, self._policy, sleep=self._sleep)
        except RetryExhaustedError as exc:
            status = getattr(exc.last_error, "status_code", None)
            logger.error(
                "Generation for %s failed after %d attempts: %s",
                kind,
                exc.attempts,
                exc.last_error,
            )
            raise ProviderError(
                f"generation backend unavailable after {exc.attempts} attempts",
                retryable=True,
                status_code=status,
                attempts=exc.attempts,
            ) from exc
        except ollama.ResponseError as exc:
            logger.error("Generation for %s rejected (%s)", kind, exc.status_code)
            raise ProviderError(
                f"generation backend rejected the request ({exc.status_code})",
                status_code=exc.status_code,
            ) from exc
        except Exception as exc:
            logger.exception("Generation for %s failed", kind)
            raise ProviderError("generation request failed") from exc

        return _to_result(response, options.model, attempts, time.perf_counter() - started)


def get_provider(config: ProviderConfig | None = None) -> ProviderClient:
    """Return the provider selected by ``config.mode``."""
    cfg = config or ProviderConfig()
    if cfg.mode == "live":
        return OllamaProvider(cfg)
    return MockProvider()
