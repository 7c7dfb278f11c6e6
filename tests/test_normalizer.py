"""Tests for the output normalizer."""

import json

import pytest

from career_ai.errors import MalformedOutputError
from career_ai.models import GenerationKind, ProviderResult
from career_ai.normalizer import extract_json_object, normalize, snake_case


def _json(data: dict) -> ProviderResult:
    return ProviderResult(text=json.dumps(data), json=data)


class TestHelpers:
    @pytest.mark.parametrize(
        "key, expected",
        [
            ("orderedSkills", "ordered_skills"),
            ("ats_keywords", "ats_keywords"),
            ("matchScore", "match_score"),
            ("summary", "summary"),
        ],
    )
    def test_snake_case(self, key, expected) -> None:
        assert snake_case(key) == expected

    def test_extract_from_fenced_block(self) -> None:
        text = 'Here you go:\n```json\n{"summary": "x"}\n```'
        assert extract_json_object(text) == {"summary": "x"}

    def test_extract_from_surrounding_chatter(self) -> None:
        assert extract_json_object('Sure! {"a": 1} Hope it helps') == {"a": 1}

    def test_extract_returns_none_for_prose(self) -> None:
        assert extract_json_object("just words") is None


class TestResume:
    def test_full_output(self) -> None:
        content = normalize(
            GenerationKind.RESUME,
            _json(
                {
                    "summary": "Seasoned engineer.",
                    "orderedSkills": ["Python", "SQL"],
                    "emphasizeSkills": ["Python"],
                    "addSkills": [],
                    "atsKeywords": ["APIs"],
                    "score": 140,
                    "sections": {
                        "experience": [
                            {"employmentId": 7, "role": "Dev", "bullets": ["Shipped"]}
                        ],
                        "education": [],
                    },
                }
            ),
        )
        assert content["ordered_skills"] == ["Python", "SQL"]
        assert content["score"] == 100
        assert content["sections"] == {
            "experience": [{"employment_id": 7, "role": "Dev", "bullets": ["Shipped"]}]
        }

    def test_partial_output_fills_required_keys(self) -> None:
        content = normalize(GenerationKind.RESUME, _json({"summary": "Only this"}))
        assert content == {
            "summary": "Only this",
            "ordered_skills": [],
            "emphasize_skills": [],
            "add_skills": [],
            "ats_keywords": [],
        }

    def test_wrong_types_are_dropped(self) -> None:
        content = normalize(
            GenerationKind.RESUME,
            _json({"summary": 5, "ordered_skills": "Python", "score": "n/a", "extra": 1}),
        )
        assert content["summary"] == ""
        assert content["ordered_skills"] == ["Python"]
        assert "score" not in content
        assert "extra" not in content

    def test_prose_fallback(self) -> None:
        content = normalize(GenerationKind.RESUME, ProviderResult(text="A strong engineer."))
        assert content["summary"] == "A strong engineer."
        assert content["ordered_skills"] == []

    @pytest.mark.parametrize(
        "text",
        [
            "[Draft] Seasoned backend engineer with a decade of Python.",
            "{Placeholder} Seasoned backend engineer.",
        ],
    )
    def test_bracket_led_prose_falls_back(self, text) -> None:
        content = normalize(GenerationKind.RESUME, ProviderResult(text=text))
        assert content["summary"] == text
        assert content["ordered_skills"] == []

    def test_fenced_text_without_json_field(self) -> None:
        result = ProviderResult(text='```json\n{"summary": "fenced"}\n```')
        assert normalize(GenerationKind.RESUME, result)["summary"] == "fenced"


class TestCoverLetter:
    def test_sections(self) -> None:
        content = normalize(
            GenerationKind.COVER_LETTER,
            _json(
                {
                    "sections": {"opening": "Hi", "body": ["P1", "P2"], "closing": "Bye"},
                    "metadata": {"wordCount": 120, "tone": "warm", "paragraphCount": "x"},
                }
            ),
        )
        assert content["sections"] == {"opening": "Hi", "body": ["P1", "P2"], "closing": "Bye"}
        assert content["metadata"] == {"word_count": 120, "tone": "warm"}

    def test_flat_keys_accepted(self) -> None:
        content = normalize(GenerationKind.COVER_LETTER, _json({"opening": "Hi", "body": "One"}))
        assert content["sections"] == {"opening": "Hi", "body": ["One"], "closing": ""}

    def test_prose_is_split_into_paragraphs(self) -> None:
        text = "Dear team,\n\nI build things.\n\nI ship things.\n\nRegards, Ada"
        content = normalize(GenerationKind.COVER_LETTER, ProviderResult(text=text))
        assert content["sections"]["opening"] == "Dear team,"
        assert content["sections"]["body"] == ["I build things.", "I ship things."]
        assert content["sections"]["closing"] == "Regards, Ada"
        assert content["metadata"]["paragraph_count"] == 4


class TestOtherKinds:
    def test_skills_optimization(self) -> None:
        content = normalize(
            GenerationKind.SKILLS_OPTIMIZATION,
            _json({"emphasize": ["Python"], "categories": {"technical": ["Python"]}, "score": 55.6}),
        )
        assert content == {
            "emphasize": ["Python"],
            "add": [],
            "order": [],
            "gaps": [],
            "categories": {"technical": ["Python"]},
            "score": 56,
        }

    def test_experience_tailoring(self) -> None:
        content = normalize(
            GenerationKind.EXPERIENCE_TAILORING,
            _json(
                {
                    "roles": [
                        {"employmentId": "7", "tailoredBullets": ["Did X"], "relevanceScore": -4},
                        "not a role",
                    ]
                }
            ),
        )
        assert content == {
            "roles": [{"employment_id": "7", "tailored_bullets": ["Did X"], "relevance_score": 0}]
        }

    def test_company_research(self) -> None:
        content = normalize(
            GenerationKind.COMPANY_RESEARCH,
            _json(
                {
                    "companyName": "Acme",
                    "description": "Anvils.",
                    "news": ["Acme raises round", {"title": "New CEO", "date": "2025-01-01"}],
                    "culture": {"remotePolicy": "hybrid", "values": ["Grit"]},
                    "leadership": [{"name": "W. Coyote", "title": "CEO"}],
                }
            ),
        )
        assert content["company_name"] == "Acme"
        assert content["products"] == []
        assert content["news"] == [
            {"title": "Acme raises round"},
            {"title": "New CEO", "date": "2025-01-01"},
        ]
        assert content["culture"] == {"remote_policy": "hybrid", "values": ["Grit"]}
        assert content["leadership"] == [{"name": "W. Coyote", "title": "CEO"}]

    def test_job_match_caps_lists_and_scores(self) -> None:
        content = normalize(
            GenerationKind.JOB_MATCH,
            _json(
                {
                    "matchScore": "85",
                    "strengths": [f"s{i}" for i in range(8)],
                    "reasoning": "Good fit.",
                    "breakdown": {"skills": 120, "experience": 70, "culturalFit": "x"},
                }
            ),
        )
        assert content["match_score"] == 85
        assert len(content["strengths"]) == 5
        assert content["breakdown"] == {"skills": 100, "experience": 70}
        assert content["skills_gaps"] == []

    @pytest.mark.parametrize(
        "kind, key",
        [
            (GenerationKind.SKILLS_OPTIMIZATION, "notes"),
            (GenerationKind.EXPERIENCE_TAILORING, "notes"),
            (GenerationKind.COMPANY_RESEARCH, "description"),
            (GenerationKind.JOB_MATCH, "reasoning"),
        ],
    )
    def test_prose_fallbacks(self, kind, key) -> None:
        content = normalize(kind, ProviderResult(text="Plain answer."))
        assert content[key] == "Plain answer."


class TestMalformed:
    def test_json_without_required_keys(self) -> None:
        with pytest.raises(MalformedOutputError) as exc_info:
            normalize(GenerationKind.RESUME, _json({"foo": "bar"}))
        assert "foo" in exc_info.value.preview

    def test_empty_output(self) -> None:
        with pytest.raises(MalformedOutputError):
            normalize(GenerationKind.JOB_MATCH, ProviderResult())

    def test_broken_json_text(self) -> None:
        with pytest.raises(MalformedOutputError):
            normalize(GenerationKind.RESUME, ProviderResult(text='{"summary": '))

    @pytest.mark.parametrize("text", ['["Python", "SQL"]', "[1, 2]", "[ ]"])
    def test_json_array_is_not_prose(self, text) -> None:
        with pytest.raises(MalformedOutputError):
            normalize(GenerationKind.RESUME, ProviderResult(text=text))

    def test_preview_is_bounded(self) -> None:
        data = {"junk": "z" * 2000}
        with pytest.raises(MalformedOutputError) as exc_info:
            normalize(GenerationKind.RESUME, _json(data))
        assert len(exc_info.value.preview) == 500
