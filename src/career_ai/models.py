"""Domain models for the generation pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class GenerationKind(str, Enum):
    """Discriminant selecting the generation workflow and output contract."""

    RESUME = "resume"
    COVER_LETTER = "cover_letter"
    SKILLS_OPTIMIZATION = "skills_optimization"
    EXPERIENCE_TAILORING = "experience_tailoring"
    COMPANY_RESEARCH = "company_research"
    JOB_MATCH = "job_match"

    @classmethod
    def parse(cls, value: object) -> "GenerationKind | None":
        """Return the kind for *value* (``cover-letter`` is accepted), or None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower().replace("-", "_"))
        except ValueError:
            return None


@dataclass(frozen=True)
class GenerationRequest:
    """A single generation call. Never persisted as-is."""

    user_id: str
    job_id: int
    kind: GenerationKind
    options: dict = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedContext:
    """Read-only snapshot of everything a prompt may draw from."""

    kind: GenerationKind
    user_id: str
    job_id: int
    profile: dict
    job: dict
    skills: tuple[dict, ...] = ()
    employment: tuple[dict, ...] = ()
    education: tuple[dict, ...] = ()
    projects: tuple[dict, ...] = ()
    certifications: tuple[dict, ...] = ()
    degraded: tuple[str, ...] = ()
    company_research: dict | None = None


@dataclass(frozen=True)
class PromptSpec:
    """A bounded instruction string plus its provenance."""

    text: str
    kind: GenerationKind
    truncated: bool = False
    template_version: str = ""


@dataclass(frozen=True)
class GenerationSettings:
    """Per-call options handed to the provider."""

    model: str
    temperature: float = 0.2
    max_tokens: int = 800


@dataclass(frozen=True)
class ProviderResult:
    """Backend-independent provider response.

    Absence of content is ``text == ""`` and ``json is None``.
    """

    text: str = ""
    json: dict | list | None = None
    tokens: int | None = None
    meta: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Admission:
    """Outcome of a rate-limit check."""

    allowed: bool
    retry_after_seconds: int | None = None


@dataclass(frozen=True)
class ArtifactDraft:
    """An artifact that has not been persisted yet."""

    user_id: str
    kind: GenerationKind
    content: dict
    job_id: int | None = None
    title: str | None = None
    prompt_excerpt: str | None = None
    model_id: str | None = None
    metadata: dict = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True)
class Artifact:
    """A persisted, user-owned generation result. Immutable."""

    id: str
    user_id: str
    kind: GenerationKind
    content: dict
    created_at: str
    job_id: int | None = None
    title: str | None = None
    prompt_excerpt: str | None = None
    model_id: str | None = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "job_id": self.job_id,
            "kind": self.kind.value,
            "title": self.title,
            "prompt_excerpt": self.prompt_excerpt,
            "model_id": self.model_id,
            "content": self.content,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ArtifactSummary:
    """Listing view of an artifact."""

    id: str
    kind: GenerationKind
    created_at: str
    job_id: int | None = None
    title: str | None = None
    model_id: str | None = None
    preview: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "job_id": self.job_id,
            "title": self.title,
            "model_id": self.model_id,
            "created_at": self.created_at,
            "preview": self.preview,
        }


@dataclass(frozen=True)
class ArtifactFilters:
    """Listing filters. ``limit`` is clamped by the store."""

    kind: GenerationKind | None = None
    job_id: int | None = None
    query: str | None = None
    limit: int = 20
    offset: int = 0
