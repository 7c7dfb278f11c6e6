"""Output normalizer — coerce raw provider output into a kind's content contract.

Models do not reliably follow instructions: keys arrive in camelCase,
optional fields go missing, lists turn into strings, and sometimes the
answer is prose instead of JSON. Normalization keeps whatever matches the
contract, drops what does not, and only gives up when nothing usable is left.
"""

import json
import re
from typing import Any, Callable

from career_ai.errors import MalformedOutputError
from career_ai.models import GenerationKind, ProviderResult

PREVIEW_CHARS = 500
JOB_MATCH_LIST_MAX = 5

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.S | re.I)
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")
_JSON_START_RE = re.compile(r'```|\{\s*("|\}|$)|\[\s*([\[{"\]\d-]|true\b|false\b|null\b|$)')
_PARAGRAPH_RE = re.compile(r"\n\s*\n")

# A kind's output is coerced when at least one of these keys is present.
_REQUIRED: dict[GenerationKind, tuple[str, ...]] = {
    GenerationKind.RESUME: (
        "summary",
        "ordered_skills",
        "emphasize_skills",
        "add_skills",
        "ats_keywords",
    ),
    GenerationKind.COVER_LETTER: ("sections", "opening", "body", "closing"),
    GenerationKind.SKILLS_OPTIMIZATION: ("emphasize", "add", "order", "gaps"),
    GenerationKind.EXPERIENCE_TAILORING: ("roles",),
    GenerationKind.COMPANY_RESEARCH: ("company_name", "description", "products", "news"),
    GenerationKind.JOB_MATCH: ("strengths", "skills_gaps", "recommendations", "reasoning"),
}


def snake_case(key: str) -> str:
    """``orderedSkills`` -> ``ordered_skills``; snake_case keys pass through."""
    return _CAMEL_RE.sub(r"_\1", key).lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {snake_case(str(k)): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def extract_json_object(text: str) -> dict | None:
    """Pull a JSON object out of *text*, tolerating code fences and chatter."""
    stripped = text.strip()
    fenced = _FENCE_RE.search(stripped)
    if fenced:
        stripped = fenced.group(1).strip()

    candidates = [stripped]
    start, end = stripped.find("{"), stripped.rfind("}")
    if start != -1 and end > start:
        candidates.append(stripped[start : end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    return None


def _looks_like_json(text: str) -> bool:
    """True for text that parses as JSON or opens like a JSON document.

    Bracket-led prose such as ``[Draft] Summary...`` is not JSON-like.
    """
    try:
        json.loads(text)
        return True
    except (json.JSONDecodeError, ValueError):
        pass
    return bool(_JSON_START_RE.match(text))


# ---------- Field coercion ----------


def _str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _str_list(value: Any, cap: int | None = None) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("name") or item.get("title")
        text = _str(item)
        if text:
            out.append(text)
    return out[:cap] if cap is not None else out


def _score(value: Any) -> int | None:
    """Clamp a 0..100 score; numeric strings are accepted."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    if isinstance(value, (int, float)):
        return max(0, min(100, round(value)))
    return None


def _count(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


def _ident(value: Any) -> str | int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return _str(value)


def _records(value: Any, fields: dict[str, Callable[[Any], Any]]) -> list[dict]:
    """Keep dict rows of *value*, projected onto *fields* and coerced."""
    if not isinstance(value, list):
        return []
    out = []
    for row in value:
        if not isinstance(row, dict):
            continue
        record = {}
        for key, coerce in fields.items():
            coerced = coerce(row.get(key))
            if coerced not in (None, "", []):
                record[key] = coerced
        if record:
            out.append(record)
    return out


def _put(content: dict, key: str, value: Any) -> None:
    """Set an optional key only when it carries something."""
    if value not in (None, "", [], {}):
        content[key] = value


_EXPERIENCE_FIELDS = {
    "employment_id": _ident,
    "role": _str,
    "company": _str,
    "dates": _str,
    "bullets": _str_list,
}
_EDUCATION_FIELDS = {
    "institution": _str,
    "degree": _str,
    "field": _str,
    "graduation_date": _str,
}
_PROJECT_FIELDS = {"name": _str, "role": _str, "bullets": _str_list}
_ROLE_FIELDS = {
    "employment_id": _ident,
    "role": _str,
    "company": _str,
    "dates": _str,
    "tailored_bullets": _str_list,
    "relevance_score": _score,
    "notes": _str,
}
_NEWS_FIELDS = {"title": _str, "summary": _str, "date": _str, "category": _str}
_LEADER_FIELDS = {"name": _str, "title": _str}


# ---------- Per-kind contracts ----------


def _coerce_resume(data: dict) -> dict:
    content: dict[str, Any] = {
        "summary": _str(data.get("summary")) or "",
        "ordered_skills": _str_list(data.get("ordered_skills")),
        "emphasize_skills": _str_list(data.get("emphasize_skills")),
        "add_skills": _str_list(data.get("add_skills")),
        "ats_keywords": _str_list(data.get("ats_keywords")),
    }
    _put(content, "score", _score(data.get("score")))

    sections = data.get("sections")
    if isinstance(sections, dict):
        out: dict[str, list] = {}
        _put(out, "experience", _records(sections.get("experience"), _EXPERIENCE_FIELDS))
        _put(out, "education", _records(sections.get("education"), _EDUCATION_FIELDS))
        _put(out, "projects", _records(sections.get("projects"), _PROJECT_FIELDS))
        _put(content, "sections", out)
    return content


def _resume_from_text(text: str) -> dict:
    return {
        "summary": text,
        "ordered_skills": [],
        "emphasize_skills": [],
        "add_skills": [],
        "ats_keywords": [],
    }


def _coerce_cover_letter(data: dict) -> dict:
    sections = data.get("sections")
    if not isinstance(sections, dict):
        sections = data
    content: dict[str, Any] = {
        "sections": {
            "opening": _str(sections.get("opening")) or "",
            "body": _str_list(sections.get("body")),
            "closing": _str(sections.get("closing")) or "",
        }
    }
    metadata = data.get("metadata")
    if isinstance(metadata, dict):
        meta: dict[str, Any] = {}
        _put(meta, "word_count", _count(metadata.get("word_count")))
        _put(meta, "tone", _str(metadata.get("tone")))
        _put(meta, "paragraph_count", _count(metadata.get("paragraph_count")))
        _put(content, "metadata", meta)
    return content


def _cover_letter_from_text(text: str) -> dict:
    paragraphs = [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]
    return {
        "sections": {
            "opening": paragraphs[0],
            "body": paragraphs[1:-1],
            "closing": paragraphs[-1] if len(paragraphs) > 1 else "",
        },
        "metadata": {
            "word_count": len(text.split()),
            "paragraph_count": len(paragraphs),
        },
    }


def _coerce_skills_optimization(data: dict) -> dict:
    content: dict[str, Any] = {
        "emphasize": _str_list(data.get("emphasize")),
        "add": _str_list(data.get("add")),
        "order": _str_list(data.get("order")),
        "gaps": _str_list(data.get("gaps")),
    }
    categories = data.get("categories")
    if isinstance(categories, dict):
        cats: dict[str, list] = {}
        _put(cats, "technical", _str_list(categories.get("technical")))
        _put(cats, "soft", _str_list(categories.get("soft")))
        _put(content, "categories", cats)
    _put(content, "score", _score(data.get("score")))
    return content


def _skills_optimization_from_text(text: str) -> dict:
    return {"emphasize": [], "add": [], "order": [], "gaps": [], "notes": text}


def _coerce_experience_tailoring(data: dict) -> dict:
    content: dict[str, Any] = {"roles": _records(data.get("roles"), _ROLE_FIELDS)}
    _put(content, "summary", _str(data.get("summary")))
    _put(content, "notes", _str(data.get("notes")))
    return content


def _experience_tailoring_from_text(text: str) -> dict:
    return {"roles": [], "notes": text}


def _news(value: Any) -> list[dict]:
    if isinstance(value, list):
        value = [{"title": v} if isinstance(v, str) else v for v in value]
    return _records(value, _NEWS_FIELDS)


def _coerce_company_research(data: dict) -> dict:
    content: dict[str, Any] = {
        "company_name": _str(data.get("company_name")) or "",
        "description": _str(data.get("description")) or "",
        "products": _str_list(data.get("products")),
        "news": _news(data.get("news")),
    }
    for key in ("industry", "size", "mission"):
        _put(content, key, _str(data.get(key)))

    culture = data.get("culture")
    if isinstance(culture, dict):
        out: dict[str, Any] = {}
        _put(out, "type", _str(culture.get("type")))
        _put(out, "remote_policy", _str(culture.get("remote_policy")))
        _put(out, "values", _str_list(culture.get("values")))
        _put(out, "perks", _str_list(culture.get("perks")))
        _put(content, "culture", out)
    _put(content, "leadership", _records(data.get("leadership"), _LEADER_FIELDS))
    return content


def _company_research_from_text(text: str) -> dict:
    return {"company_name": "", "description": text, "products": [], "news": []}


def _coerce_job_match(data: dict) -> dict:
    content: dict[str, Any] = {
        "strengths": _str_list(data.get("strengths"), JOB_MATCH_LIST_MAX),
        "skills_gaps": _str_list(data.get("skills_gaps"), JOB_MATCH_LIST_MAX),
        "recommendations": _str_list(data.get("recommendations"), JOB_MATCH_LIST_MAX),
        "reasoning": _str(data.get("reasoning")) or "",
    }
    _put(content, "match_score", _score(data.get("match_score")))

    breakdown = data.get("breakdown")
    if isinstance(breakdown, dict):
        scores: dict[str, int] = {}
        for key in ("skills", "experience", "education", "cultural_fit"):
            _put(scores, key, _score(breakdown.get(key)))
        _put(content, "breakdown", scores)
    return content


def _job_match_from_text(text: str) -> dict:
    return {"strengths": [], "skills_gaps": [], "recommendations": [], "reasoning": text}


_CONTRACTS: dict[GenerationKind, tuple[Callable[[dict], dict], Callable[[str], dict]]] = {
    GenerationKind.RESUME: (_coerce_resume, _resume_from_text),
    GenerationKind.COVER_LETTER: (_coerce_cover_letter, _cover_letter_from_text),
    GenerationKind.SKILLS_OPTIMIZATION: (
        _coerce_skills_optimization,
        _skills_optimization_from_text,
    ),
    GenerationKind.EXPERIENCE_TAILORING: (
        _coerce_experience_tailoring,
        _experience_tailoring_from_text,
    ),
    GenerationKind.COMPANY_RESEARCH: (
        _coerce_company_research,
        _company_research_from_text,
    ),
    GenerationKind.JOB_MATCH: (_coerce_job_match, _job_match_from_text),
}


def _preview(result: ProviderResult) -> str:
    raw = result.text or (json.dumps(result.json) if result.json is not None else "")
    return raw[:PREVIEW_CHARS]


def normalize(kind: GenerationKind, result: ProviderResult) -> dict:
    """Coerce *result* into the content contract for *kind*.

    Structured data is taken from ``result.json`` when it is an object,
    otherwise parsed out of ``result.text``. If any required key is present
    the data is coerced: wrong types are dropped, unknown keys ignored, and
    missing required keys filled with empty values. Prose answers get a
    minimal shape built around the text.

    Raises:
        MalformedOutputError: When the output is empty, or is JSON that
            carries none of the kind's required keys.
    """
    kind = GenerationKind(kind)
    coerce, from_text = _CONTRACTS[kind]

    data = result.json if isinstance(result.json, dict) else None
    if data is None and result.text:
        data = extract_json_object(result.text)
    if data is not None:
        data = _snake_keys(data)
        if any(data.get(key) is not None for key in _REQUIRED[kind]):
            return coerce(data)

    text = (result.text or "").strip()
    if text and not _looks_like_json(text) and data is None:
        return from_text(text)

    raise MalformedOutputError(
        f"{kind.value} output is missing every required field",
        preview=_preview(result),
    )
